"""Tests for Pilot registration and observed version collection."""

from __future__ import annotations

import logging

import pytest

from navigator.cluster.pilot import PilotControl, pilot_for_cluster, pool_versions
from navigator.cluster.util import (
    NODE_POOL_NAME_LABEL,
    ForeignOwnershipError,
    new_controller_ref,
)
from navigator.models import NodePoolStatus, ObjectMeta, OwnerReference, Resource, ResourceKind
from tests.conftest import build_pod


def _non_cluster_pod(cluster, name: str) -> Resource:
    pod = build_pod(cluster, name)
    pod.metadata.owner_references = []
    return pod


def _pilots(store, cluster) -> list[Resource]:
    return store.list(ResourceKind.PILOT, cluster.namespace)


def _pilot(name: str, pool: str, version: str | None) -> Resource:
    return Resource(
        kind=ResourceKind.PILOT,
        metadata=ObjectMeta(name=name, labels={NODE_POOL_NAME_LABEL: pool}),
        status={"version": version} if version else {},
    )


# --- PilotControl.sync ---


class TestPilotSync:
    def test_each_cluster_pod_gets_a_pilot(self, store, cluster):
        store.add(build_pod(cluster, "foo"))
        store.add(build_pod(cluster, "bar"))
        PilotControl(store).sync(cluster)
        assert len(_pilots(store, cluster)) == 2

    def test_non_cluster_pods_are_ignored(self, store, cluster):
        store.add(build_pod(cluster, "foo"))
        store.add(_non_cluster_pod(cluster, "bar"))
        PilotControl(store).sync(cluster)
        assert [p.name for p in _pilots(store, cluster)] == ["foo"]

    def test_pilot_exists(self, store, cluster):
        pod = build_pod(cluster, "foo")
        store.add(pod)
        store.add(pilot_for_cluster(cluster, pod))
        PilotControl(store).sync(cluster)
        assert len(_pilots(store, cluster)) == 1
        assert store.actions == []

    def test_foreign_owned_pilot(self, store, cluster):
        pod = build_pod(cluster, "foo")
        pilot = pilot_for_cluster(cluster, pod)
        pilot.metadata.owner_references = []
        store.add(pod)
        store.add(pilot)
        with pytest.raises(ForeignOwnershipError):
            PilotControl(store).sync(cluster)
        assert len(_pilots(store, cluster)) == 1
        assert store.actions == []

    def test_pilot_needs_sync(self, store, cluster):
        pod = build_pod(cluster, "foo")
        unsynced = pilot_for_cluster(cluster, pod)
        unsynced.metadata.labels = {}
        unsynced.status = {"version": "3.11.2"}
        store.add(pod)
        store.add(unsynced)
        PilotControl(store).sync(cluster)
        pilots = _pilots(store, cluster)
        assert len(pilots) == 1
        assert pilots[0].metadata.labels
        assert pilots[0].status == {"version": "3.11.2"}

    def test_delete_pilot_if_no_matching_pod(self, store, cluster):
        store.add(pilot_for_cluster(cluster, build_pod(cluster, "foo")))
        PilotControl(store).sync(cluster)
        assert _pilots(store, cluster) == []

    def test_do_not_delete_foreign_owned_pilots(self, store, cluster):
        foreign = pilot_for_cluster(cluster, build_pod(cluster, "foo"))
        foreign.metadata.owner_references = []
        store.add(foreign)
        with pytest.raises(ForeignOwnershipError):
            PilotControl(store).sync(cluster)
        assert len(_pilots(store, cluster)) == 1

    def test_pods_of_owned_statefulset_get_pilots(self, store, cluster):
        ss = Resource(
            kind=ResourceKind.STATEFUL_SET,
            metadata=ObjectMeta(
                name="cass-bar-ringnodes",
                namespace="foo",
                labels={
                    "navigator.jetstack.io/cluster-type": "CassandraCluster",
                    "navigator.jetstack.io/cluster-name": "bar",
                },
                owner_references=[new_controller_ref(cluster)],
            ),
        )
        store.add(ss)
        pod = build_pod(cluster, "cass-bar-ringnodes-0", pool_name="ringnodes")
        pod.metadata.owner_references = [OwnerReference(
            api_version="apps/v1", kind="StatefulSet", name="cass-bar-ringnodes", uid="ss-uid",
        )]
        store.add(pod)
        PilotControl(store).sync(cluster)
        pilots = _pilots(store, cluster)
        assert [p.name for p in pilots] == ["cass-bar-ringnodes-0"]
        assert pilots[0].metadata.labels[NODE_POOL_NAME_LABEL] == "ringnodes"

    def test_versions_folded_into_status(self, store, cluster):
        cluster.status.node_pools["ringnodes"] = NodePoolStatus(ready_replicas=2)
        for name, version in (("p0", "3.11.2"), ("p1", "3.11.1")):
            pod = build_pod(cluster, name, pool_name="ringnodes")
            store.add(pod)
            pilot = pilot_for_cluster(cluster, pod)
            pilot.status = {"version": version}
            store.add(pilot)
        PilotControl(store).sync(cluster)
        assert cluster.status.node_pools["ringnodes"].version == "3.11.1"

    def test_unparseable_version_does_not_fail_sync(self, store, cluster):
        cluster.status.node_pools["ringnodes"] = NodePoolStatus(ready_replicas=1)
        pod = build_pod(cluster, "p0", pool_name="ringnodes")
        store.add(pod)
        pilot = pilot_for_cluster(cluster, pod)
        pilot.status = {"version": "3.11"}
        store.add(pilot)
        PilotControl(store).sync(cluster)
        assert cluster.status.node_pools["ringnodes"].version is None


# --- pool_versions ---


class TestPoolVersions:
    def test_lowest_version_wins(self):
        versions = pool_versions([
            _pilot("a", "data", "5.6.2"),
            _pilot("b", "data", "5.6.10"),
            _pilot("c", "data", "5.6.3"),
        ])
        assert versions == {"data": "5.6.2"}

    def test_unreported_pilot_blocks_pool(self):
        versions = pool_versions([
            _pilot("a", "data", "5.6.2"),
            _pilot("b", "data", None),
            _pilot("c", "master", "5.6.2"),
        ])
        assert versions == {"data": None, "master": "5.6.2"}

    def test_pilots_without_pool_label_ignored(self):
        pilot = _pilot("a", "data", "5.6.2")
        pilot.metadata.labels = {}
        assert pool_versions([pilot]) == {}

    def test_prerelease_orders_below_release(self):
        versions = pool_versions([
            _pilot("a", "data", "3.11.2"),
            _pilot("b", "data", "3.11.3-SNAPSHOT"),
            _pilot("c", "data", "3.11.2-SNAPSHOT"),
        ])
        assert versions == {"data": "3.11.2-SNAPSHOT"}

    def test_build_metadata_does_not_order(self):
        versions = pool_versions([
            _pilot("a", "data", "3.11.2+build1"),
            _pilot("b", "data", "3.11.2"),
        ])
        assert versions == {"data": "3.11.2+build1"}

    def test_unparseable_version_counts_as_unreported(self, caplog):
        with caplog.at_level(logging.WARNING, logger="navigator.cluster.pilot"):
            versions = pool_versions([
                _pilot("a", "data", "3.11.2"),
                _pilot("b", "data", "banana"),
                _pilot("c", "master", "3.11.2"),
            ])
        assert versions == {"data": None, "master": "3.11.2"}
        assert "unparseable version" in caplog.text
