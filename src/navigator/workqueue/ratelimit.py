"""Per-item exponential backoff for the work queue.

Each key that fails processing is retried after a delay that doubles with
every consecutive failure, up to a ceiling. A successful sync calls
``forget(key)`` which resets the key back to the base delay. All state is
in-memory and thread-safe via a single lock.

Usage::

    limiter = ItemExponentialFailureRateLimiter(RateLimitConfig())

    delay = limiter.when("ns/cluster")    # 0.005s, then 0.01s, 0.02s, ...
    limiter.forget("ns/cluster")          # after a successful sync
"""

from __future__ import annotations

import threading

from pydantic import BaseModel, Field, model_validator


class RateLimitConfig(BaseModel):
    """Configuration for per-item retry backoff."""

    base_delay: float = Field(0.005, gt=0)
    """Delay in seconds before the first retry of a failing key."""

    max_delay: float = Field(1000.0, gt=0)
    """Upper bound on the retry delay in seconds."""

    @model_validator(mode="after")
    def _check_bounds(self) -> RateLimitConfig:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class ItemExponentialFailureRateLimiter:
    """Exponential per-item backoff: ``base_delay * 2**failures``, capped."""

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self._config = config or RateLimitConfig()
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}

    @property
    def config(self) -> RateLimitConfig:
        """The backoff configuration."""
        return self._config

    def when(self, item: str) -> float:
        """Record a failure for *item* and return how long to wait before retrying."""
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # Cap the exponent so the float never overflows for very old keys
        if exp >= 64:
            return self._config.max_delay
        return min(self._config.base_delay * (2 ** exp), self._config.max_delay)

    def num_requeues(self, item: str) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: str) -> None:
        """Clear the failure history for *item*."""
        with self._lock:
            self._failures.pop(item, None)
