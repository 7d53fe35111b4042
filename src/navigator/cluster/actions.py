"""Structural actions chosen by the planner.

An action is a plain value naming what to do to one node pool. It is
executed against a ResourceStore by :func:`execute_action`; each action is
idempotent, so re-running it against a store that already reflects it
writes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from navigator.cluster.nodepool import statefulset_for_node_pool
from navigator.cluster.util import (
    VERSION_LABEL,
    ForeignOwnershipError,
    node_pool_resource_name,
    owner_check,
)
from navigator.models import Cluster, NodePool, Resource, ResourceKind
from navigator.store.base import AlreadyExistsError, NotFoundError, ResourceStore, StoreError

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """Raised when an action could not be carried out."""


@dataclass(frozen=True)
class CreateNodePool:
    """Create the workload set of a pool that has none yet."""

    cluster: Cluster
    node_pool: NodePool

    @property
    def name(self) -> str:
        return "CreateNodePool"


@dataclass(frozen=True)
class ScaleOut:
    """Raise a pool's replica count to the desired value."""

    cluster: Cluster
    node_pool: NodePool

    @property
    def name(self) -> str:
        return "ScaleOut"


@dataclass(frozen=True)
class UpdateVersion:
    """Move a pool's image to the desired version."""

    cluster: Cluster
    node_pool: NodePool

    @property
    def name(self) -> str:
        return "UpdateVersion"


Action = CreateNodePool | ScaleOut | UpdateVersion


def describe(action: Action) -> str:
    """One-line human description, used for events and ``navigator plan``."""
    cluster, pool = action.cluster, action.node_pool
    match action:
        case CreateNodePool():
            return f"Create node pool {pool.name} with {pool.replicas} replicas"
        case ScaleOut():
            ready = cluster.status.node_pools.get(pool.name)
            current = ready.ready_replicas if ready is not None else 0
            return f"Scale node pool {pool.name} from {current} to {pool.replicas} replicas"
        case UpdateVersion():
            return (
                f"Update node pool {pool.name} to version "
                f"{cluster.spec.version_for(pool)}"
            )
    raise TypeError(f"Unknown action: {action!r}")


def execute_action(action: Action, store: ResourceStore) -> None:
    """Carry out *action* against *store*.

    Raises:
        ActionError: If the action failed. The cause is chained.
    """
    logger.info("Executing %s on %s", action.name, action.cluster.key)
    try:
        match action:
            case CreateNodePool():
                _create_node_pool(action, store)
            case ScaleOut():
                _scale_out(action, store)
            case UpdateVersion():
                _update_version(action, store)
            case _:
                raise TypeError(f"Unknown action: {action!r}")
    except (StoreError, ForeignOwnershipError) as exc:
        raise ActionError(f"{action.name} failed for {action.cluster.key}: {exc}") from exc


def _get_owned_set(action: Action, store: ResourceStore) -> Resource:
    cluster, pool = action.cluster, action.node_pool
    name = node_pool_resource_name(cluster, pool.name)
    try:
        ss = store.get(ResourceKind.STATEFUL_SET, cluster.namespace, name)
    except NotFoundError as exc:
        raise ActionError(
            f"{action.name}: StatefulSet {cluster.namespace}/{name} does not exist"
        ) from exc
    owner_check(ss, cluster)
    return ss


def _create_node_pool(action: CreateNodePool, store: ResourceStore) -> None:
    desired = statefulset_for_node_pool(action.cluster, action.node_pool)
    try:
        store.create(desired)
    except AlreadyExistsError:
        # Created by an earlier cycle whose status we have not seen yet.
        existing = store.get(ResourceKind.STATEFUL_SET, desired.namespace, desired.name)
        owner_check(existing, action.cluster)


def _scale_out(action: ScaleOut, store: ResourceStore) -> None:
    ss = _get_owned_set(action, store)
    desired = action.node_pool.replicas
    current = ss.spec.get("replicas") or 0
    if current >= desired:
        return
    logger.info("Scaling %s from %d to %d replicas", ss.name, current, desired)
    ss.spec["replicas"] = desired
    store.update(ss)


def _update_version(action: UpdateVersion, store: ResourceStore) -> None:
    ss = _get_owned_set(action, store)
    cluster, pool = action.cluster, action.node_pool
    version = cluster.spec.version_for(pool)
    image = cluster.spec.image.with_tag(version)

    containers = ss.spec.get("template", {}).get("spec", {}).get("containers", [])
    if not containers:
        raise ActionError(f"{action.name}: StatefulSet {ss.name} has no containers")
    if containers[0].get("image") == image and ss.metadata.labels.get(VERSION_LABEL) == version:
        return
    logger.info("Updating %s to %s", ss.name, image)
    containers[0]["image"] = image
    ss.metadata.labels[VERSION_LABEL] = version
    store.update(ss)
