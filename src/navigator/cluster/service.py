"""Cluster services.

Two services front every cluster:
- the seed provider service (headless, selects only seed pods, publishes
  not-ready addresses so new nodes can find seeds while bootstrapping)
- the nodes service (client traffic to every node in the cluster)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from navigator.cluster.util import (
    SEED_LABEL,
    cluster_labels,
    ensure_resource,
    new_controller_ref,
    nodes_service_name,
    seeds_service_name,
    selector_for_cluster,
)
from navigator.models import Cluster, ClusterKind, ObjectMeta, Resource, ResourceKind
from navigator.store.base import ResourceStore

ES_HTTP_PORT = 9200
ES_TRANSPORT_PORT = 9300
CASSANDRA_INTRANODE_PORT = 7000


def _port(name: str, port: int) -> dict[str, Any]:
    return {"name": name, "port": port, "targetPort": port, "protocol": "TCP"}


def _service(cluster: Cluster, name: str, spec: dict[str, Any]) -> Resource:
    return Resource(
        kind=ResourceKind.SERVICE,
        metadata=ObjectMeta(
            name=name,
            namespace=cluster.namespace,
            labels=cluster_labels(cluster),
            owner_references=[new_controller_ref(cluster)],
        ),
        spec=spec,
    )


def seed_provider_service_for_cluster(cluster: Cluster) -> Resource:
    if cluster.kind == ClusterKind.CASSANDRA:
        ports = [_port("intranode", CASSANDRA_INTRANODE_PORT)]
    else:
        ports = [_port("transport", ES_TRANSPORT_PORT)]
    return _service(cluster, seeds_service_name(cluster), {
        "type": "ClusterIP",
        "clusterIP": "None",
        "publishNotReadyAddresses": True,
        "selector": {**selector_for_cluster(cluster), SEED_LABEL: "true"},
        "ports": ports,
    })


def nodes_service_for_cluster(cluster: Cluster) -> Resource:
    if cluster.kind == ClusterKind.CASSANDRA:
        ports = [_port("cql", cluster.spec.cql_port)]
    else:
        ports = [_port("http", ES_HTTP_PORT)]
    return _service(cluster, nodes_service_name(cluster), {
        "type": "ClusterIP",
        "selector": selector_for_cluster(cluster),
        "ports": ports,
    })


class ServiceControl:
    """Keeps one service per cluster in the shape given by *service_for_cluster*."""

    def __init__(
        self,
        store: ResourceStore,
        service_for_cluster: Callable[[Cluster], Resource],
    ) -> None:
        self._store = store
        self._service_for_cluster = service_for_cluster

    def sync(self, cluster: Cluster) -> None:
        ensure_resource(self._store, cluster, self._service_for_cluster(cluster))
