"""Pilot registration.

Every database pod runs a pilot agent which reports through a ``Pilot``
resource named after the pod. This control keeps exactly one Pilot per
cluster pod and folds the versions the pilots report into the cluster
status.
"""

from __future__ import annotations

import logging

from semver import Version

from navigator.cluster.util import (
    NODE_POOL_NAME_LABEL,
    cluster_labels,
    collect_garbage,
    ensure_resource,
    is_controlled_by,
    new_controller_ref,
    statefulsets_for_cluster,
)
from navigator.models import (
    API_VERSION,
    Cluster,
    ObjectMeta,
    Resource,
    ResourceKind,
    parse_version,
)
from navigator.store.base import ResourceStore

logger = logging.getLogger(__name__)


def pilot_for_cluster(cluster: Cluster, pod: Resource) -> Resource:
    """Build the desired Pilot for *pod*."""
    labels = cluster_labels(cluster)
    pool_name = pod.metadata.labels.get(NODE_POOL_NAME_LABEL)
    if pool_name:
        labels[NODE_POOL_NAME_LABEL] = pool_name
    return Resource(
        kind=ResourceKind.PILOT,
        api_version=API_VERSION,
        metadata=ObjectMeta(
            name=pod.name,
            namespace=pod.namespace,
            labels=labels,
            owner_references=[new_controller_ref(cluster)],
        ),
    )


def _labels_drifted(existing: Resource, desired: Resource) -> bool:
    return any(
        existing.metadata.labels.get(k) != v for k, v in desired.metadata.labels.items()
    )


def pool_versions(pilots: list[Resource]) -> dict[str, str | None]:
    """Return the lowest reported version per node pool.

    A pool maps to None while any of its pilots has not reported a version.
    A version that does not parse counts as not reported.
    """
    versions: dict[str, str | None] = {}
    lowest: dict[str, Version] = {}
    unreported: set[str] = set()
    for pilot in pilots:
        pool_name = pilot.metadata.labels.get(NODE_POOL_NAME_LABEL)
        if not pool_name:
            continue
        reported = pilot.status.get("version")
        if not reported:
            unreported.add(pool_name)
            continue
        try:
            parsed = parse_version(reported)
        except ValueError:
            logger.warning(
                "Pilot %s/%s reported unparseable version %r",
                pilot.namespace, pilot.name, reported,
            )
            unreported.add(pool_name)
            continue
        if pool_name not in lowest or parsed < lowest[pool_name]:
            lowest[pool_name] = parsed
            versions[pool_name] = reported
    for pool_name in unreported:
        versions[pool_name] = None
    return versions


class PilotControl:
    """Creates, updates and deletes Pilots to match the cluster's pods."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    def sync(self, cluster: Cluster) -> None:
        pods = self._cluster_pods(cluster)
        for pod in pods:
            ensure_resource(
                self._store,
                cluster,
                pilot_for_cluster(cluster, pod),
                needs_update=_labels_drifted,
            )
        collect_garbage(
            self._store, cluster, ResourceKind.PILOT, {pod.name for pod in pods},
        )
        self._update_versions(cluster)

    def _cluster_pods(self, cluster: Cluster) -> list[Resource]:
        """Pods controlled by the cluster or by one of its owned sets."""
        set_names = set(statefulsets_for_cluster(self._store, cluster))
        pods = []
        for pod in self._store.list(ResourceKind.POD, cluster.namespace):
            if is_controlled_by(pod, cluster):
                pods.append(pod)
                continue
            ref = pod.metadata.controller_ref()
            if ref is not None and ref.kind == ResourceKind.STATEFUL_SET and ref.name in set_names:
                pods.append(pod)
        return pods

    def _update_versions(self, cluster: Cluster) -> None:
        pilots = [
            p for p in self._store.list(ResourceKind.PILOT, cluster.namespace)
            if is_controlled_by(p, cluster)
        ]
        versions = pool_versions(pilots)
        for pool_name, status in cluster.status.node_pools.items():
            status.version = versions.get(pool_name)
            logger.debug(
                "Observed version of %s/%s: %s", cluster.key, pool_name, status.version,
            )
