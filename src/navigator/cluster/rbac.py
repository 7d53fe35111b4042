"""Service account, role and role binding used by a cluster's pilots.

Pilots need to read and update their own Pilot resource and look up pods;
nothing else. The role is bound to the service account that every node
pool pod runs as.
"""

from __future__ import annotations

from collections.abc import Callable

from navigator.cluster.util import (
    cluster_labels,
    ensure_resource,
    new_controller_ref,
    pilot_role_name,
    service_account_name,
)
from navigator.models import API_GROUP, Cluster, ObjectMeta, Resource, ResourceKind
from navigator.store.base import ResourceStore

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"


def _meta(cluster: Cluster, name: str) -> ObjectMeta:
    return ObjectMeta(
        name=name,
        namespace=cluster.namespace,
        labels=cluster_labels(cluster),
        owner_references=[new_controller_ref(cluster)],
    )


def service_account_for_cluster(cluster: Cluster) -> Resource:
    return Resource(
        kind=ResourceKind.SERVICE_ACCOUNT,
        metadata=_meta(cluster, service_account_name(cluster)),
    )


def role_for_cluster(cluster: Cluster) -> Resource:
    return Resource(
        kind=ResourceKind.ROLE,
        api_version=RBAC_API_VERSION,
        metadata=_meta(cluster, pilot_role_name(cluster)),
        spec={
            "rules": [
                {
                    "apiGroups": [API_GROUP],
                    "resources": ["pilots"],
                    "verbs": ["get", "list", "watch", "update", "patch"],
                },
                {
                    "apiGroups": [""],
                    "resources": ["pods"],
                    "verbs": ["get", "list"],
                },
            ],
        },
    )


def role_binding_for_cluster(cluster: Cluster) -> Resource:
    return Resource(
        kind=ResourceKind.ROLE_BINDING,
        api_version=RBAC_API_VERSION,
        metadata=_meta(cluster, pilot_role_name(cluster)),
        spec={
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "Role",
                "name": pilot_role_name(cluster),
            },
            "subjects": [{
                "kind": "ServiceAccount",
                "name": service_account_name(cluster),
                "namespace": cluster.namespace,
            }],
        },
    )


class RBACControl:
    """Keeps one RBAC object per cluster, built by *resource_for_cluster*."""

    def __init__(
        self,
        store: ResourceStore,
        resource_for_cluster: Callable[[Cluster], Resource],
    ) -> None:
        self._store = store
        self._resource_for_cluster = resource_for_cluster

    def sync(self, cluster: Cluster) -> None:
        ensure_resource(self._store, cluster, self._resource_for_cluster(cluster))


def service_account_control(store: ResourceStore) -> RBACControl:
    return RBACControl(store, service_account_for_cluster)


def role_control(store: ResourceStore) -> RBACControl:
    return RBACControl(store, role_for_cluster)


def role_binding_control(store: ResourceStore) -> RBACControl:
    return RBACControl(store, role_binding_for_cluster)
