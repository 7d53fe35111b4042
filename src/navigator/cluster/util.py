"""Naming, labelling and ownership helpers shared by every cluster control.

Every derived resource:
- is named ``<prefix>-<cluster>`` or ``<prefix>-<cluster>-<pool>``
- carries the cluster-type / cluster-name (and node-pool-name) labels
- carries exactly one controller owner reference naming its cluster

``ensure_resource`` and ``collect_garbage`` implement the create / verify
ownership / update / garbage-collect cycle on top of those conventions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from navigator.models import (
    API_GROUP,
    API_VERSION,
    Cluster,
    ClusterKind,
    OwnerReference,
    Resource,
    ResourceKind,
)
from navigator.store.base import NotFoundError, ResourceStore, StoreObject

logger = logging.getLogger(__name__)

CLUSTER_TYPE_LABEL = f"{API_GROUP}/cluster-type"
CLUSTER_NAME_LABEL = f"{API_GROUP}/cluster-name"
NODE_POOL_NAME_LABEL = f"{API_GROUP}/node-pool-name"
VERSION_LABEL = f"{API_GROUP}/version"
ROLE_LABEL_PREFIX = f"{API_GROUP}/role-"
SEED_LABEL = "seed"

_TYPE_PREFIX = {
    ClusterKind.CASSANDRA: "cass",
    ClusterKind.ELASTICSEARCH: "es",
}

_APP_LABEL = {
    ClusterKind.CASSANDRA: "cassandracluster",
    ClusterKind.ELASTICSEARCH: "elasticsearch",
}

_HASH_ANNOTATION = {
    ClusterKind.CASSANDRA: f"{API_GROUP}/cassandra-node-pool-hash",
    ClusterKind.ELASTICSEARCH: f"{API_GROUP}/elasticsearch-node-pool-hash",
}


class ForeignOwnershipError(Exception):
    """A resource with the expected name exists but is not owned by the cluster."""


# --- Naming ---


def type_prefix(kind: ClusterKind) -> str:
    return _TYPE_PREFIX[kind]


def resource_base_name(cluster: Cluster) -> str:
    return f"{type_prefix(cluster.kind)}-{cluster.name}"


def node_pool_resource_name(cluster: Cluster, pool_name: str) -> str:
    return f"{resource_base_name(cluster)}-{pool_name}"


def parse_node_pool_resource_name(name: str) -> tuple[str, str]:
    """Split ``<prefix>-<cluster>-<pool>`` into ``(cluster, pool)``.

    Cluster names may contain ``-``; pool names may not.

    Raises:
        ValueError: If *name* is not a node pool resource name.
    """
    err = ValueError(
        "Not a node pool resource name. "
        f"Expected '<prefix>-<clustername>-<nodepoolname>', got {name!r}."
    )
    parts = name.split("-")
    if len(parts) < 3 or parts[0] not in _TYPE_PREFIX.values():
        raise err
    cluster_name = "-".join(parts[1:-1])
    pool_name = parts[-1]
    if not cluster_name or not pool_name:
        raise err
    return cluster_name, pool_name


def seeds_service_name(cluster: Cluster) -> str:
    return f"{resource_base_name(cluster)}-seeds"


def nodes_service_name(cluster: Cluster) -> str:
    return resource_base_name(cluster)


def service_account_name(cluster: Cluster) -> str:
    return resource_base_name(cluster)


def pilot_role_name(cluster: Cluster) -> str:
    return f"{resource_base_name(cluster)}-pilot"


def node_pool_hash_annotation(kind: ClusterKind) -> str:
    return _HASH_ANNOTATION[kind]


# --- Labels and selectors ---


def cluster_labels(cluster: Cluster) -> dict[str, str]:
    return {
        "app": _APP_LABEL[cluster.kind],
        CLUSTER_TYPE_LABEL: str(cluster.kind),
        CLUSTER_NAME_LABEL: cluster.name,
    }


def node_pool_labels(
    cluster: Cluster, pool_name: str, roles: Iterable[str] = (),
) -> dict[str, str]:
    labels = cluster_labels(cluster)
    if pool_name:
        labels[NODE_POOL_NAME_LABEL] = pool_name
    for role in roles:
        labels[f"{ROLE_LABEL_PREFIX}{role}"] = "true"
    return labels


def selector_for_cluster(cluster: Cluster) -> dict[str, str]:
    return {
        CLUSTER_TYPE_LABEL: str(cluster.kind),
        CLUSTER_NAME_LABEL: cluster.name,
    }


def selector_for_node_pool(cluster: Cluster, pool_name: str) -> dict[str, str]:
    selector = selector_for_cluster(cluster)
    selector[NODE_POOL_NAME_LABEL] = pool_name
    return selector


# --- Ownership ---


def new_controller_ref(cluster: Cluster) -> OwnerReference:
    return OwnerReference(
        api_version=API_VERSION,
        kind=str(cluster.kind),
        name=cluster.name,
        uid=cluster.metadata.uid,
    )


def is_controlled_by(obj: StoreObject, owner: StoreObject) -> bool:
    ref = obj.metadata.controller_ref()
    return ref is not None and ref.uid == owner.metadata.uid and ref.kind == str(owner.kind)


def owner_check(obj: StoreObject, owner: StoreObject) -> None:
    """Raise ForeignOwnershipError unless *owner* controls *obj*."""
    if is_controlled_by(obj, owner):
        return
    ref = obj.metadata.controller_ref()
    current = f"{ref.kind} {ref.name} ({ref.uid})" if ref is not None else "nobody"
    raise ForeignOwnershipError(
        f"'{obj.metadata.namespace}/{obj.metadata.name}' is foreign owned: "
        f"it is owned by {current}, not "
        f"'{owner.metadata.namespace}/{owner.metadata.name}'."
    )


def statefulsets_for_cluster(store: ResourceStore, cluster: Cluster) -> dict[str, Resource]:
    """Return the cluster's stateful sets, keyed by name. Foreign-owned sets are skipped."""
    results: dict[str, Resource] = {}
    for ss in store.list(
        ResourceKind.STATEFUL_SET, cluster.namespace, selector_for_cluster(cluster),
    ):
        if not is_controlled_by(ss, cluster):
            continue
        results[ss.name] = ss
    return results


# --- Create / update / garbage collect ---


def _content_differs(existing: Resource, desired: Resource) -> bool:
    # Only the fields we set are compared; the API fills in the rest.
    return (
        any(existing.spec.get(k) != v for k, v in desired.spec.items())
        or any(existing.metadata.labels.get(k) != v for k, v in desired.metadata.labels.items())
        or any(
            existing.metadata.annotations.get(k) != v
            for k, v in desired.metadata.annotations.items()
        )
    )


def ensure_resource(
    store: ResourceStore,
    cluster: Cluster,
    desired: Resource,
    needs_update: Callable[[Resource, Resource], bool] = _content_differs,
    merge: Callable[[Resource, Resource], Resource] | None = None,
) -> Resource:
    """Create *desired*, or bring the existing object of that name up to date.

    An existing object that the cluster does not control is never touched:
    ForeignOwnershipError is raised instead. Nothing is written when
    *needs_update* reports no difference.
    """
    try:
        existing = store.get(desired.kind, desired.namespace, desired.name)
    except NotFoundError:
        logger.debug("Creating %s %s/%s", desired.kind, desired.namespace, desired.name)
        desired.metadata.owner_references = [new_controller_ref(cluster)]
        return store.create(desired)

    owner_check(existing, cluster)
    if not needs_update(existing, desired):
        return existing

    updated = merge(existing, desired) if merge is not None else _merge(existing, desired)
    logger.debug("Updating %s %s/%s", desired.kind, desired.namespace, desired.name)
    return store.update(updated)


def _merge(existing: Resource, desired: Resource) -> Resource:
    updated = existing.model_copy(deep=True)
    updated.metadata.labels.update(desired.metadata.labels)
    updated.metadata.annotations.update(desired.metadata.annotations)
    updated.spec.update(desired.spec)
    return updated


def collect_garbage(
    store: ResourceStore,
    cluster: Cluster,
    kind: str,
    desired_names: Iterable[str],
    selector: dict[str, str] | None = None,
) -> list[str]:
    """Delete the cluster's *kind* objects whose names are not in *desired_names*.

    Objects matching the selector but owned by someone else are left alone
    and reported with ForeignOwnershipError once the owned orphans are gone.

    Returns the names that were deleted.
    """
    wanted = set(desired_names)
    deleted: list[str] = []
    foreign: list[str] = []
    for obj in store.list(kind, cluster.namespace, selector or selector_for_cluster(cluster)):
        if obj.name in wanted:
            continue
        if not is_controlled_by(obj, cluster):
            foreign.append(obj.name)
            continue
        logger.info("Deleting orphaned %s %s/%s", kind, obj.namespace, obj.name)
        try:
            store.delete(kind, obj.namespace, obj.name)
        except NotFoundError:
            # Already gone; the cache was behind.
            pass
        deleted.append(obj.name)

    if foreign:
        raise ForeignOwnershipError(
            f"Refusing to delete foreign owned {kind} objects in "
            f"{cluster.namespace}: {', '.join(sorted(foreign))}"
        )
    return deleted
