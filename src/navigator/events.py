"""Event recording against managed objects.

Controllers report what they did, and why a sync failed, by recording
Normal/Warning events with a short reason code and a formatted message.
Recording is fire-and-forget: failures are warned but never abort a sync.

Built-in recorders:
- FakeRecorder: keeps events in memory (tests, dry runs)
- LoggingRecorder: writes events to the ``navigator.events`` logger
- StoreRecorder: persists ``Event`` resources through a ResourceStore

Custom recorders just need an ``event(obj, event_type, reason, message)`` method.
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
import warnings
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from navigator.models import ObjectMeta, Resource, ResourceKind

if TYPE_CHECKING:
    from navigator.store.base import ResourceStore, StoreObject

logger = logging.getLogger("navigator.events")

ERR_SYNC = "ErrSync"
SUCCESS_SYNC = "SuccessSync"
EVENT_SOURCE = "navigator-controller"


class EventType(enum.StrEnum):
    NORMAL = "Normal"
    WARNING = "Warning"


class RecorderWarning(UserWarning):
    """Emitted when an event recorder fails (non-fatal)."""


class Event(BaseModel):
    """A single recorded event."""

    involved_kind: str
    involved_namespace: str
    involved_name: str
    type: EventType
    reason: str
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    def __str__(self) -> str:
        return f"{self.type} {self.reason} {self.message}"


def _build_event(
    obj: StoreObject, event_type: EventType, reason: str, message: str,
) -> Event:
    return Event(
        involved_kind=str(obj.kind),
        involved_namespace=obj.metadata.namespace,
        involved_name=obj.metadata.name,
        type=event_type,
        reason=reason,
        message=message,
    )


@runtime_checkable
class EventRecorder(Protocol):
    """Protocol for event sinks."""

    def event(
        self, obj: StoreObject, event_type: EventType, reason: str, message: str,
    ) -> None:
        """Record an event against *obj*."""
        ...


def eventf(
    recorder: EventRecorder,
    obj: StoreObject,
    event_type: EventType,
    reason: str,
    template: str,
    *args: object,
) -> None:
    """Record an event whose message is ``template % args``."""
    recorder.event(obj, event_type, reason, template % args if args else template)


class FakeRecorder:
    """Keeps every event in memory. Thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[Event] = []

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def reasons(self) -> list[str]:
        return [e.reason for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def event(
        self, obj: StoreObject, event_type: EventType, reason: str, message: str,
    ) -> None:
        ev = _build_event(obj, event_type, reason, message)
        with self._lock:
            self._events.append(ev)


class LoggingRecorder:
    """Writes events to the log: warnings at WARNING, the rest at INFO."""

    def event(
        self, obj: StoreObject, event_type: EventType, reason: str, message: str,
    ) -> None:
        level = logging.WARNING if event_type == EventType.WARNING else logging.INFO
        logger.log(
            level,
            "%s %s/%s: %s %s",
            obj.kind, obj.metadata.namespace, obj.metadata.name, reason, message,
        )


def _event_body(obj: StoreObject, ev: Event) -> dict[str, Any]:
    """The event in API field naming."""
    timestamp = ev.timestamp.isoformat()
    return {
        "involvedObject": {
            "apiVersion": obj.api_version,
            "kind": ev.involved_kind,
            "namespace": ev.involved_namespace,
            "name": ev.involved_name,
            "uid": obj.metadata.uid,
        },
        "type": str(ev.type),
        "reason": ev.reason,
        "message": ev.message,
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "count": 1,
        "source": {"component": EVENT_SOURCE},
    }


class StoreRecorder:
    """Persists events as ``Event`` resources next to the involved object.

    Events are also logged through :class:`LoggingRecorder`.
    """

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self._log = LoggingRecorder()

    def event(
        self, obj: StoreObject, event_type: EventType, reason: str, message: str,
    ) -> None:
        self._log.event(obj, event_type, reason, message)
        ev = _build_event(obj, event_type, reason, message)
        resource = Resource(
            kind=ResourceKind.EVENT,
            metadata=ObjectMeta(
                name=f"{obj.metadata.name}.{uuid.uuid4().hex[:16]}",
                namespace=obj.metadata.namespace,
            ),
            spec=_event_body(obj, ev),
        )
        try:
            self._store.create(resource)
        except Exception as exc:
            warnings.warn(
                f"Failed to record event {reason} for "
                f"{obj.metadata.namespace}/{obj.metadata.name}: {exc}",
                RecorderWarning,
                stacklevel=2,
            )
