"""Shared fixtures: an in-memory store, a fake recorder and cluster builders."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from navigator.cluster.util import NODE_POOL_NAME_LABEL, new_controller_ref
from navigator.events import FakeRecorder
from navigator.models import (
    Cluster,
    ClusterKind,
    ClusterSpec,
    ImageSpec,
    NodePool,
    ObjectMeta,
    Resource,
    ResourceKind,
)
from navigator.store.memory import InMemoryStore


class MockClock:
    """A controllable clock for testing time-dependent behavior."""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


def build_cluster(
    name: str = "bar",
    namespace: str = "foo",
    kind: ClusterKind = ClusterKind.CASSANDRA,
    pools: list[NodePool] | None = None,
    version: str = "3.11.2",
    uid: str | None = None,
) -> Cluster:
    return Cluster(
        kind=kind,
        metadata=ObjectMeta(name=name, namespace=namespace, uid=uid or f"uid-{name}"),
        spec=ClusterSpec(
            version=version,
            node_pools=pools if pools is not None else [NodePool(name="ringnodes", replicas=3)],
            image=ImageSpec(repository="cassandra", tag=version),
            pilot_image=ImageSpec(repository="quay.io/jetstack/navigator-pilot", tag="v0.1.0"),
        ),
    )


def build_pod(cluster: Cluster, name: str, pool_name: str | None = None) -> Resource:
    """A pod controlled directly by *cluster*."""
    labels = {NODE_POOL_NAME_LABEL: pool_name} if pool_name else {}
    return Resource(
        kind=ResourceKind.POD,
        metadata=ObjectMeta(
            name=name,
            namespace=cluster.namespace,
            labels=labels,
            owner_references=[new_controller_ref(cluster)],
        ),
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture()
def clock() -> MockClock:
    return MockClock()


@pytest.fixture()
def make_cluster() -> Callable[..., Cluster]:
    return build_cluster


@pytest.fixture()
def make_pod() -> Callable[..., Resource]:
    return build_pod


@pytest.fixture()
def cluster(store: InMemoryStore) -> Cluster:
    """A Cassandra cluster ``foo/bar`` already present in the store."""
    return store.add(build_cluster())
