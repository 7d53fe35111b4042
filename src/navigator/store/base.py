"""ResourceStore protocol and shared store errors.

The store is the controller's view of the declarative resource API: a
read-through cache that may lag the true state, plus the write verbs.
Any object with these methods satisfies the protocol; no inheritance
required.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from navigator.models import Cluster, Resource

StoreObject = Cluster | Resource


class StoreError(Exception):
    """Raised for any failed read or write against the resource API."""


class NotFoundError(StoreError):
    """The requested object does not exist."""


class AlreadyExistsError(StoreError):
    """An object with the same kind, namespace and name already exists."""


class ConflictError(StoreError):
    """The write was based on a stale resource version."""


@runtime_checkable
class ResourceEventHandler(Protocol):
    """Receives change notifications from a store.

    Notifications are hints that something changed; handlers must never
    treat the object they receive as authoritative.
    """

    def on_add(self, obj: StoreObject) -> None: ...

    def on_update(self, old: StoreObject, new: StoreObject) -> None: ...

    def on_delete(self, obj: StoreObject) -> None: ...


@runtime_checkable
class ResourceStore(Protocol):
    """Protocol for resource API backends.

    Reads return copies, so callers may mutate what they get back.
    """

    def get(self, kind: str, namespace: str, name: str) -> StoreObject:
        """Return one object. Raises NotFoundError if it does not exist."""
        ...

    def list(
        self,
        kind: str,
        namespace: str,
        selector: Mapping[str, str] | None = None,
    ) -> list[StoreObject]:
        """Return all objects of a kind in a namespace matching the selector."""
        ...

    def create(self, obj: StoreObject) -> StoreObject:
        ...

    def update(self, obj: StoreObject) -> StoreObject:
        """Replace metadata and spec. The stored status is left untouched."""
        ...

    def update_status(self, obj: StoreObject) -> StoreObject:
        """Replace only the status of an existing object."""
        ...

    def delete(self, kind: str, namespace: str, name: str) -> None:
        ...

    def add_event_handler(self, kind: str, handler: ResourceEventHandler) -> None:
        ...

    def has_synced(self) -> bool:
        """True once the initial listing of every watched kind is complete."""
        ...


def matches_selector(
    labels: Mapping[str, str],
    selector: Mapping[str, str] | None,
) -> bool:
    """Equality-based label selector match. An empty selector matches all."""
    if not selector:
        return True
    return all(labels.get(key) == value for key, value in selector.items())


def format_selector(selector: Mapping[str, str]) -> str:
    """Render a selector as ``k=v,k2=v2`` (sorted, for API calls and logs)."""
    return ",".join(f"{key}={selector[key]}" for key in sorted(selector))
