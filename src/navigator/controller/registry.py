"""Controller registry: the table of controllers a manager can start.

Each entry maps a controller name (the kind it reconciles) to a
constructor taking a :class:`ControllerContext`. Nothing registers itself
on import; the composition root builds the table explicitly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from navigator.controller.base import Controller
from navigator.events import EventRecorder
from navigator.store.base import ResourceStore
from navigator.workqueue.ratelimit import RateLimitConfig


class RegistryError(Exception):
    """Raised for unknown or duplicate controller registrations."""


@dataclass(frozen=True)
class ControllerContext:
    """Everything a controller constructor may depend on."""

    store: ResourceStore
    recorder: EventRecorder
    namespace: str = ""
    cache_sync_timeout: float = 30.0
    resync_period: float = 30.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


ControllerFactory = Callable[[ControllerContext], Controller]


class ControllerRegistry:
    """Name → constructor table. Names must be unique."""

    def __init__(self) -> None:
        self._factories: dict[str, ControllerFactory] = {}

    def __len__(self) -> int:
        return len(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def register(self, name: str, factory: ControllerFactory) -> None:
        """Register *factory* under *name*.

        Raises RegistryError if the name is already taken.
        """
        if name in self._factories:
            raise RegistryError(f"Duplicate controller name '{name}'")
        self._factories[name] = factory

    def get_or_raise(self, name: str) -> ControllerFactory:
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(self.names()) or "none"
            raise RegistryError(f"Unknown controller '{name}' (registered: {known})")
        return factory

    def names(self) -> list[str]:
        """Return sorted registered controller names."""
        return sorted(self._factories)

    def build(self, name: str, ctx: ControllerContext) -> Controller:
        return self.get_or_raise(name)(ctx)
