"""In-memory ResourceStore with watch notifications.

Used by the test-suite and by ``navigator run --in-memory``. Behaves like
the real API for the parts the controllers rely on: unique names per
kind/namespace, resource versions with optimistic concurrency, status
kept separate from spec, and add/update/delete notifications.

Thread-safe via a single re-entrant lock. Handlers are invoked after the
lock is released so they can call back into the store.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from navigator.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceEventHandler,
    StoreError,
    StoreObject,
    matches_selector,
)

_Key = tuple[str, str, str]


@dataclass(frozen=True)
class StoreAction:
    """One mutating call made against the store."""

    verb: str
    kind: str
    namespace: str
    name: str


class InMemoryStore:
    """Thread-safe in-memory resource store.

    Every mutating call is recorded in :attr:`actions`, which lets tests
    assert that a second reconciliation of unchanged input writes nothing.
    """

    def __init__(
        self,
        objects: Iterable[StoreObject] | None = None,
        synced: bool = True,
    ) -> None:
        self._lock = threading.RLock()
        self._objects: dict[_Key, StoreObject] = {}
        self._handlers: dict[str, list[ResourceEventHandler]] = {}
        self._actions: list[StoreAction] = []
        self._failures: dict[tuple[str, str], StoreError] = {}
        self._revision = 0
        self._synced = synced
        for obj in objects or []:
            self.add(obj)

    # --- Test helpers ---

    def add(self, obj: StoreObject) -> StoreObject:
        """Seed an object without recording an action or notifying."""
        with self._lock:
            stored = self._prepare_new(obj)
            self._objects[self._key_of(stored)] = stored
            return stored.model_copy(deep=True)

    @property
    def actions(self) -> list[StoreAction]:
        with self._lock:
            return list(self._actions)

    def actions_for(self, verb: str | None = None, kind: str | None = None) -> list[StoreAction]:
        return [
            a for a in self.actions
            if (verb is None or a.verb == verb) and (kind is None or a.kind == kind)
        ]

    def clear_actions(self) -> None:
        with self._lock:
            self._actions.clear()

    def inject_error(self, verb: str, kind: str, error: StoreError | None = None) -> None:
        """Make every future *verb* call on *kind* raise *error*."""
        with self._lock:
            self._failures[(verb, kind)] = error or StoreError(
                f"injected {verb} failure for {kind}"
            )

    def clear_errors(self) -> None:
        with self._lock:
            self._failures.clear()

    def mark_synced(self) -> None:
        with self._lock:
            self._synced = True

    # --- ResourceStore ---

    def has_synced(self) -> bool:
        with self._lock:
            return self._synced

    def get(self, kind: str, namespace: str, name: str) -> StoreObject:
        with self._lock:
            self._maybe_fail("get", kind)
            obj = self._objects.get((kind, namespace, name))
            if obj is None:
                raise NotFoundError(f"{kind} {namespace}/{name} not found")
            return obj.model_copy(deep=True)

    def list(
        self,
        kind: str,
        namespace: str,
        selector: Mapping[str, str] | None = None,
    ) -> list[StoreObject]:
        with self._lock:
            self._maybe_fail("list", kind)
            found = [
                obj.model_copy(deep=True)
                for (k, ns, _), obj in sorted(self._objects.items())
                if k == kind
                and (not namespace or ns == namespace)
                and matches_selector(obj.metadata.labels, selector)
            ]
        return found

    def create(self, obj: StoreObject) -> StoreObject:
        with self._lock:
            self._maybe_fail("create", obj.kind)
            key = self._key_of(obj)
            if key in self._objects:
                raise AlreadyExistsError(
                    f"{obj.kind} {obj.metadata.namespace}/{obj.metadata.name} already exists"
                )
            stored = self._prepare_new(obj)
            self._objects[key] = stored
            self._record("create", stored)
            result = stored.model_copy(deep=True)
        self._notify(obj.kind, lambda h: h.on_add(result.model_copy(deep=True)))
        return result

    def update(self, obj: StoreObject) -> StoreObject:
        def keep_status(old: StoreObject, new: StoreObject) -> StoreObject:
            new.status = copy.deepcopy(old.status)
            return new

        return self._replace(obj, "update", keep_status)

    def update_status(self, obj: StoreObject) -> StoreObject:
        def only_status(old: StoreObject, new: StoreObject) -> StoreObject:
            kept = old.model_copy(deep=True)
            kept.status = new.status
            return kept

        return self._replace(obj, "update_status", only_status)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        with self._lock:
            self._maybe_fail("delete", kind)
            obj = self._objects.pop((kind, namespace, name), None)
            if obj is None:
                raise NotFoundError(f"{kind} {namespace}/{name} not found")
            self._record("delete", obj)
        self._notify(kind, lambda h: h.on_delete(obj.model_copy(deep=True)))

    def add_event_handler(self, kind: str, handler: ResourceEventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)
            existing = [
                obj.model_copy(deep=True)
                for (k, _, _), obj in sorted(self._objects.items())
                if k == kind
            ]
        # New handlers see the current contents as adds, like an initial list.
        for obj in existing:
            handler.on_add(obj)

    # --- Private ---

    def _replace(
        self,
        obj: StoreObject,
        verb: str,
        merge: Callable[[StoreObject, StoreObject], StoreObject],
    ) -> StoreObject:
        with self._lock:
            self._maybe_fail(verb, obj.kind)
            key = self._key_of(obj)
            old = self._objects.get(key)
            if old is None:
                raise NotFoundError(
                    f"{obj.kind} {obj.metadata.namespace}/{obj.metadata.name} not found"
                )
            sent_version = obj.metadata.resource_version
            if sent_version and sent_version != old.metadata.resource_version:
                raise ConflictError(
                    f"{obj.kind} {obj.metadata.namespace}/{obj.metadata.name}: "
                    f"resource version {sent_version} is stale "
                    f"(current {old.metadata.resource_version})"
                )
            new = merge(old, obj.model_copy(deep=True))
            new.metadata.uid = old.metadata.uid
            new.metadata.resource_version = self._next_revision()
            self._objects[key] = new
            self._record(verb, new)
            before = old.model_copy(deep=True)
            after = new.model_copy(deep=True)
        self._notify(obj.kind, lambda h: h.on_update(before, after))
        return new.model_copy(deep=True)

    def _prepare_new(self, obj: StoreObject) -> StoreObject:
        stored = obj.model_copy(deep=True)
        if not stored.metadata.uid:
            stored.metadata.uid = str(uuid.uuid4())
        stored.metadata.resource_version = self._next_revision()
        return stored

    def _next_revision(self) -> str:
        self._revision += 1
        return str(self._revision)

    def _record(self, verb: str, obj: StoreObject) -> None:
        self._actions.append(StoreAction(
            verb=verb,
            kind=obj.kind,
            namespace=obj.metadata.namespace,
            name=obj.metadata.name,
        ))

    def _maybe_fail(self, verb: str, kind: str) -> None:
        failure = self._failures.get((verb, kind))
        if failure is not None:
            raise failure

    def _notify(self, kind: str, call: Callable[[ResourceEventHandler], None]) -> None:
        with self._lock:
            handlers = list(self._handlers.get(kind, []))
        for handler in handlers:
            call(handler)

    @staticmethod
    def _key_of(obj: StoreObject) -> _Key:
        return (str(obj.kind), obj.metadata.namespace, obj.metadata.name)
