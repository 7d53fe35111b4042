"""Deduplicating, rate-limited work queue.

Guarantees, per key:
- ``add`` is idempotent while the key is waiting to be processed.
- A key is handed to at most one worker at a time: if it is re-added while
  a worker holds it, it is queued again only when that worker calls
  ``done``.
- ``add_rate_limited`` re-adds the key after the rate limiter's backoff.

On ``shut_down`` the queue stops accepting keys; keys already queued are
still handed out, and ``get`` reports shutdown once the queue is empty.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from navigator.workqueue.ratelimit import ItemExponentialFailureRateLimiter

logger = logging.getLogger(__name__)


class RateLimitingQueue:
    """Work queue with per-key deduplication, delayed adds and backoff.

    Thread-safe. Delayed adds are driven by one daemon thread that is
    started on first use.
    """

    def __init__(
        self,
        rate_limiter: ItemExponentialFailureRateLimiter | None = None,
        name: str = "",
        _clock: Callable[[], float] | None = None,
    ) -> None:
        self._name = name
        self._rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._clock = _clock or time.monotonic

        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._shutting_down = False

        self._delay_cond = threading.Condition()
        self._waiting: list[tuple[float, int, str]] = []
        self._ready_at: dict[str, float] = {}
        self._sequence = itertools.count()
        self._delay_thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self._name

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, item: str) -> None:
        with self._cond:
            if self._shutting_down:
                return
            if item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> tuple[str | None, bool]:
        """Block until a key is available.

        Returns ``(key, False)``, or ``(None, True)`` once the queue has been
        shut down and drained. With a *timeout*, returns ``(None, False)``
        if nothing arrived in time.
        """
        with self._cond:
            deadline = None if timeout is None else self._clock() + timeout
            while not self._queue and not self._shutting_down:
                remaining = None if deadline is None else deadline - self._clock()
                if remaining is not None and remaining <= 0:
                    return None, False
                self._cond.wait(remaining)
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: str) -> None:
        """Mark *item* as processed. Must be called once per ``get``."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._delay_cond:
            self._waiting.clear()
            self._ready_at.clear()
            self._delay_cond.notify_all()

    # --- Delayed and rate-limited adds ---

    def add_after(self, item: str, delay: float) -> None:
        """Add *item* once *delay* seconds have passed."""
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = self._clock() + delay
        with self._delay_cond:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._sequence), item))
            self._ensure_delay_thread()
            self._delay_cond.notify()

    def add_rate_limited(self, item: str) -> None:
        delay = self._rate_limiter.when(item)
        logger.debug("Requeueing %r in %.3fs (queue %s)", item, delay, self._name)
        self.add_after(item, delay)

    def forget(self, item: str) -> None:
        """Stop tracking retries for *item* (call after a successful sync)."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: str) -> int:
        return self._rate_limiter.num_requeues(item)

    def _ensure_delay_thread(self) -> None:
        if self._delay_thread is None:
            self._delay_thread = threading.Thread(
                target=self._wait_loop,
                name=f"workqueue-delay-{self._name or id(self)}",
                daemon=True,
            )
            self._delay_thread.start()

    def _wait_loop(self) -> None:
        while True:
            with self._delay_cond:
                if self.shutting_down:
                    return
                now = self._clock()
                ready: list[str] = []
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    # Entries superseded by an earlier deadline are skipped
                    if self._ready_at.get(item) == ready_at:
                        del self._ready_at[item]
                        ready.append(item)
                if not ready:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._delay_cond.wait(timeout)
                    continue
            for item in ready:
                self.add(item)
