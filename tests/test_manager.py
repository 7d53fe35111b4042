"""Tests for the Manager composition root."""

from __future__ import annotations

import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from navigator.config import ConfigError, ControllerConfig
from navigator.controller.base import CacheSyncError
from navigator.events import FakeRecorder
from navigator.manager import Manager, build_store
from navigator.models import ResourceKind
from navigator.store.base import NotFoundError
from navigator.store.memory import InMemoryStore
from tests.conftest import build_cluster


def _cfg(**overrides) -> ControllerConfig:
    return ControllerConfig(**{"workers": 1, "cache_sync_timeout": 1.0, **overrides})


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestBuildStore:
    def test_in_memory(self):
        assert isinstance(build_store(_cfg(), in_memory=True), InMemoryStore)

    def test_kube_store_from_config(self):
        mock_k8s = MagicMock()
        with patch.dict(sys.modules, {"kubernetes": mock_k8s}):
            from navigator.store.kube import KubeStore

            store = build_store(_cfg(kubeconfig="/tmp/kc", namespace="db"))
        assert isinstance(store, KubeStore)
        assert store._kubeconfig == "/tmp/kc"
        assert store._namespace == "db"


class TestFromConfig:
    def test_builds_all_registered_controllers(self):
        manager = Manager.from_config(_cfg(), store=InMemoryStore(), recorder=FakeRecorder())
        assert [c.name for c in manager.controllers] == [
            "CassandraCluster", "ElasticsearchCluster",
        ]

    def test_builds_named_subset(self):
        manager = Manager.from_config(
            _cfg(controllers=("ElasticsearchCluster",)), store=InMemoryStore(),
        )
        assert [c.name for c in manager.controllers] == ["ElasticsearchCluster"]

    def test_unknown_controller(self):
        with pytest.raises(ConfigError, match="Unknown controller 'Redis'"):
            Manager.from_config(_cfg(controllers=("Redis",)), store=InMemoryStore())


class TestManagerRun:
    def test_reconciles_until_stopped(self):
        store = InMemoryStore()
        store.add(build_cluster())
        manager = Manager.from_config(
            _cfg(controllers=("CassandraCluster",)), store=store, recorder=FakeRecorder(),
        )
        stop = threading.Event()
        thread = threading.Thread(target=manager.run, args=(stop,), daemon=True)
        thread.start()

        def _seeds_created() -> bool:
            try:
                store.get(ResourceKind.SERVICE, "foo", "cass-bar-seeds")
            except NotFoundError:
                return False
            return True

        assert _wait_for(_seeds_created)
        stop.set()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert manager.errors == []

    def test_cache_sync_timeout_stops_manager(self):
        store = InMemoryStore(synced=False)
        manager = Manager.from_config(
            _cfg(cache_sync_timeout=0.05), store=store, recorder=FakeRecorder(),
        )
        stop = threading.Event()
        thread = threading.Thread(target=manager.run, args=(stop,), daemon=True)
        thread.start()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert stop.is_set()
        assert manager.errors
        assert all(isinstance(e, CacheSyncError) for e in manager.errors)

    def test_stops_store(self):
        store = MagicMock()
        manager = Manager([], workers=1, store=store)
        manager.run(threading.Event())
        store.stop.assert_called_once()
