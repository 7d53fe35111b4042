"""Tests for the in-memory ResourceStore and selector helpers."""

from __future__ import annotations

import threading

import pytest

from navigator.models import ObjectMeta, Resource, ResourceKind
from navigator.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceStore,
    StoreError,
    format_selector,
    matches_selector,
)
from navigator.store.memory import InMemoryStore, StoreAction


def _svc(name: str = "svc", namespace: str = "ns", labels: dict | None = None) -> Resource:
    return Resource(
        kind=ResourceKind.SERVICE,
        metadata=ObjectMeta(name=name, namespace=namespace, labels=labels or {}),
        spec={"type": "ClusterIP"},
    )


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def on_add(self, obj):
        self.calls.append(("add", obj.name))

    def on_update(self, old, new):
        self.calls.append(("update", new.name))

    def on_delete(self, obj):
        self.calls.append(("delete", obj.name))


# --- Selectors ---


class TestSelectors:
    def test_empty_selector_matches_everything(self):
        assert matches_selector({"a": "1"}, None)
        assert matches_selector({}, {})

    def test_all_pairs_must_match(self):
        assert matches_selector({"a": "1", "b": "2"}, {"a": "1"})
        assert not matches_selector({"a": "1"}, {"a": "1", "b": "2"})
        assert not matches_selector({"a": "2"}, {"a": "1"})

    def test_format_sorted(self):
        assert format_selector({"b": "2", "a": "1"}) == "a=1,b=2"


# --- InMemoryStore ---


class TestInMemoryStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, ResourceStore)

    def test_create_and_get(self, store):
        created = store.create(_svc())
        assert created.metadata.uid
        assert created.metadata.resource_version
        got = store.get(ResourceKind.SERVICE, "ns", "svc")
        assert got.spec == {"type": "ClusterIP"}
        assert store.actions == [StoreAction("create", "Service", "ns", "svc")]

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get(ResourceKind.SERVICE, "ns", "nope")

    def test_create_duplicate(self, store):
        store.create(_svc())
        with pytest.raises(AlreadyExistsError):
            store.create(_svc())

    def test_reads_are_copies(self, store):
        store.create(_svc())
        got = store.get(ResourceKind.SERVICE, "ns", "svc")
        got.spec["type"] = "NodePort"
        assert store.get(ResourceKind.SERVICE, "ns", "svc").spec["type"] == "ClusterIP"

    def test_list_filters_namespace_and_selector(self, store):
        store.add(_svc("a", "ns", {"app": "x"}))
        store.add(_svc("b", "ns", {"app": "y"}))
        store.add(_svc("c", "other", {"app": "x"}))
        assert [o.name for o in store.list(ResourceKind.SERVICE, "ns")] == ["a", "b"]
        assert [o.name for o in store.list(ResourceKind.SERVICE, "", {"app": "x"})] == ["a", "c"]

    def test_update_keeps_status(self, store):
        obj = store.create(_svc())
        obj.status = {"loadBalancer": {}}
        store.update_status(obj)
        current = store.get(ResourceKind.SERVICE, "ns", "svc")
        current.spec["type"] = "NodePort"
        current.status = {}
        store.update(current)
        after = store.get(ResourceKind.SERVICE, "ns", "svc")
        assert after.spec["type"] == "NodePort"
        assert after.status == {"loadBalancer": {}}

    def test_update_status_keeps_spec(self, store):
        obj = store.create(_svc())
        obj.spec = {"type": "NodePort"}
        obj.status = {"ready": True}
        store.update_status(obj)
        after = store.get(ResourceKind.SERVICE, "ns", "svc")
        assert after.spec == {"type": "ClusterIP"}
        assert after.status == {"ready": True}

    def test_stale_resource_version_conflicts(self, store):
        obj = store.create(_svc())
        store.update(obj)
        with pytest.raises(ConflictError):
            store.update(obj)

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update(_svc())

    def test_delete(self, store):
        store.create(_svc())
        store.delete(ResourceKind.SERVICE, "ns", "svc")
        with pytest.raises(NotFoundError):
            store.get(ResourceKind.SERVICE, "ns", "svc")
        with pytest.raises(NotFoundError):
            store.delete(ResourceKind.SERVICE, "ns", "svc")

    def test_add_is_silent(self, store):
        store.add(_svc())
        assert store.actions == []

    def test_actions_for(self, store):
        obj = store.create(_svc())
        store.update(obj)
        assert len(store.actions_for("update")) == 1
        assert len(store.actions_for(kind=ResourceKind.SERVICE)) == 2
        store.clear_actions()
        assert store.actions == []

    def test_injected_errors(self, store):
        store.inject_error("create", ResourceKind.SERVICE)
        with pytest.raises(StoreError, match="injected"):
            store.create(_svc())
        store.clear_errors()
        store.create(_svc())

    def test_has_synced(self):
        s = InMemoryStore(synced=False)
        assert not s.has_synced()
        s.mark_synced()
        assert s.has_synced()


class TestInMemoryStoreNotifications:
    def test_handler_replays_existing(self, store):
        store.add(_svc("a"))
        rec = _Recorder()
        store.add_event_handler(ResourceKind.SERVICE, rec)
        assert rec.calls == [("add", "a")]

    def test_mutations_notify(self, store):
        rec = _Recorder()
        store.add_event_handler(ResourceKind.SERVICE, rec)
        obj = store.create(_svc())
        store.update(obj)
        store.delete(ResourceKind.SERVICE, "ns", "svc")
        assert rec.calls == [("add", "svc"), ("update", "svc"), ("delete", "svc")]

    def test_other_kinds_not_notified(self, store):
        rec = _Recorder()
        store.add_event_handler(ResourceKind.POD, rec)
        store.create(_svc())
        assert rec.calls == []

    def test_handler_may_call_back_into_store(self, store):
        seen = []

        class Reader:
            def on_add(self, obj):
                seen.append(store.get(obj.kind, obj.namespace, obj.name).name)

            def on_update(self, old, new):
                pass

            def on_delete(self, obj):
                pass

        store.add_event_handler(ResourceKind.SERVICE, Reader())
        store.create(_svc())
        assert seen == ["svc"]

    def test_concurrent_creates(self, store):
        def worker(i: int) -> None:
            store.create(_svc(f"svc{i}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.list(ResourceKind.SERVICE, "ns")) == 20
