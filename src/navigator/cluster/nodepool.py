"""Node pool workload sets.

Each node pool runs as one StatefulSet named ``<prefix>-<cluster>-<pool>``.
This control does not create sets (that is the planner's CreateNodePool
action). Each sync it:

1. rewrites owned sets whose drift hash no longer matches the spec,
   keeping their current replica count and image tag
2. deletes owned sets whose pool was removed from the spec
3. rebuilds ``status.node_pools`` from the owned sets
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from navigator.cluster.hashing import compute_node_pool_hash
from navigator.cluster.util import (
    NODE_POOL_NAME_LABEL,
    VERSION_LABEL,
    collect_garbage,
    new_controller_ref,
    node_pool_hash_annotation,
    node_pool_labels,
    node_pool_resource_name,
    seeds_service_name,
    service_account_name,
    statefulsets_for_cluster,
)
from navigator.models import (
    Cluster,
    ClusterKind,
    NodePool,
    NodePoolStatus,
    ObjectMeta,
    Resource,
    ResourceKind,
)
from navigator.store.base import ResourceStore

logger = logging.getLogger(__name__)

_CONTAINER_NAME = {
    ClusterKind.CASSANDRA: "cassandra",
    ClusterKind.ELASTICSEARCH: "elasticsearch",
}

PILOT_INSTALL_PATH = "/shared"


def _env(cluster: Cluster, pool: NodePool) -> list[dict[str, str]]:
    env = {
        "NAVIGATOR_CLUSTER_NAME": cluster.name,
        "NAVIGATOR_NODE_POOL_NAME": pool.name,
        "NAVIGATOR_DATACENTER": pool.datacenter,
        "NAVIGATOR_RACK": pool.rack,
        **pool.config,
    }
    return [{"name": k, "value": v} for k, v in sorted(env.items())]


def statefulset_for_node_pool(
    cluster: Cluster, pool: NodePool, version: str | None = None,
) -> Resource:
    """Build the desired StatefulSet for *pool*.

    *version* selects the image tag; it defaults to the pool's desired
    version.
    """
    version = version or cluster.spec.version_for(pool)
    spec = cluster.spec
    labels = node_pool_labels(cluster, pool.name, pool.roles)
    container: dict[str, Any] = {
        "name": _CONTAINER_NAME[cluster.kind],
        "image": spec.image.with_tag(version),
        "imagePullPolicy": spec.image.pull_policy,
        "resources": pool.resources,
        "env": _env(cluster, pool),
        "volumeMounts": [{"name": "shared", "mountPath": PILOT_INSTALL_PATH}],
    }
    pod_spec: dict[str, Any] = {
        "serviceAccountName": service_account_name(cluster),
        "nodeSelector": pool.node_selector,
        "initContainers": [{
            "name": "install-pilot",
            "image": spec.pilot_image.with_tag(spec.pilot_image.tag or "latest"),
            "imagePullPolicy": spec.pilot_image.pull_policy,
            "command": ["cp", "/pilot", f"{PILOT_INSTALL_PATH}/pilot"],
            "volumeMounts": [{"name": "shared", "mountPath": PILOT_INSTALL_PATH}],
        }],
        "containers": [container],
        "volumes": [{"name": "shared", "emptyDir": {}}],
    }
    if spec.sysctls:
        pod_spec["securityContext"] = {
            "sysctls": [
                {"name": k, "value": v}
                for k, _, v in (s.partition("=") for s in spec.sysctls)
            ],
        }

    return Resource(
        kind=ResourceKind.STATEFUL_SET,
        api_version="apps/v1",
        metadata=ObjectMeta(
            name=node_pool_resource_name(cluster, pool.name),
            namespace=cluster.namespace,
            labels={**labels, VERSION_LABEL: version},
            annotations={
                node_pool_hash_annotation(cluster.kind): compute_node_pool_hash(cluster, pool),
            },
            owner_references=[new_controller_ref(cluster)],
        ),
        spec={
            "replicas": pool.replicas,
            "serviceName": seeds_service_name(cluster),
            "podManagementPolicy": "OrderedReady",
            "selector": {"matchLabels": node_pool_labels(cluster, pool.name)},
            "template": {"metadata": {"labels": labels}, "spec": pod_spec},
        },
    )


class NodePoolControl:
    """Drift updates, garbage collection and status for node pool sets."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    def sync(self, cluster: Cluster) -> None:
        sets = statefulsets_for_cluster(self._store, cluster)
        annotation = node_pool_hash_annotation(cluster.kind)

        for pool in cluster.spec.node_pools:
            existing = sets.get(node_pool_resource_name(cluster, pool.name))
            if existing is None:
                continue
            desired_hash = compute_node_pool_hash(cluster, pool)
            if existing.metadata.annotations.get(annotation) == desired_hash:
                continue
            logger.info(
                "Node pool %s/%s drifted, updating %s",
                cluster.key, pool.name, existing.name,
            )
            sets[existing.name] = self._store.update(self._drift_update(cluster, pool, existing))

        desired_names = {node_pool_resource_name(cluster, p.name) for p in cluster.spec.node_pools}
        for name in collect_garbage(
            self._store, cluster, ResourceKind.STATEFUL_SET, desired_names,
        ):
            sets.pop(name, None)

        self.update_status(cluster, sets.values())

    @staticmethod
    def _drift_update(cluster: Cluster, pool: NodePool, existing: Resource) -> Resource:
        current_version = existing.metadata.labels.get(VERSION_LABEL) or cluster.spec.version_for(pool)
        desired = statefulset_for_node_pool(cluster, pool, version=current_version)
        desired.spec["replicas"] = existing.spec.get("replicas", pool.replicas)

        updated = existing.model_copy(deep=True)
        updated.metadata.labels.update(desired.metadata.labels)
        updated.metadata.annotations.update(desired.metadata.annotations)
        updated.spec.update(desired.spec)
        return updated

    @staticmethod
    def update_status(cluster: Cluster, sets: Iterable[Resource]) -> None:
        """Replace ``status.node_pools`` with one entry per owned set."""
        cluster.status.node_pools = {}
        for ss in sets:
            pool_name = ss.metadata.labels.get(NODE_POOL_NAME_LABEL)
            if not pool_name:
                continue
            cluster.status.node_pools[pool_name] = NodePoolStatus(
                ready_replicas=ss.status.get("readyReplicas", 0) or 0,
            )
