"""Next-action planner.

Given a cluster whose status has just been recomputed, choose at most one
structural action by fixed precedence:

1. CreateNodePool for the first pool (in spec order) with no status entry
2. ScaleOut for the first pool whose ready replicas differ from desired;
   a scale-down is unsupported and stops planning
3. UpdateVersion for the first pool running an older version of the same
   major; unknown observed versions, downgrades and major upgrades stop
   planning

The planner never touches the store. Unsupported changes are logged at
error level and yield no action.
"""

from __future__ import annotations

import logging

from navigator.cluster.actions import Action, CreateNodePool, ScaleOut, UpdateVersion
from navigator.models import Cluster, parse_version

logger = logging.getLogger(__name__)


def next_action(cluster: Cluster) -> Action | None:
    """Return the single next action for *cluster*, or None."""
    spec, status = cluster.spec, cluster.status

    for pool in spec.node_pools:
        if pool.name not in status.node_pools:
            return CreateNodePool(cluster=cluster, node_pool=pool)

    for pool in spec.node_pools:
        ready = status.node_pools[pool.name].ready_replicas
        if pool.replicas == ready:
            continue
        if pool.replicas > ready:
            return ScaleOut(cluster=cluster, node_pool=pool)
        logger.error(
            "Unsupported scale change on node pool %s/%s from %d to %d",
            cluster.key, pool.name, ready, pool.replicas,
        )
        return None

    for pool in spec.node_pools:
        observed = status.node_pools[pool.name].version
        if observed is None:
            return None
        desired_version = parse_version(spec.version_for(pool))
        try:
            observed_version = parse_version(observed)
        except ValueError:
            logger.error(
                "Node pool %s/%s reports unparseable version %r",
                cluster.key, pool.name, observed,
            )
            return None
        if desired_version < observed_version:
            logger.error(
                "Version downgrades are not supported: node pool %s/%s runs %s, desired %s",
                cluster.key, pool.name, observed_version, desired_version,
            )
            return None
        if observed_version.major != desired_version.major:
            logger.error(
                "Major version upgrades are not supported: node pool %s/%s runs %s, desired %s",
                cluster.key, pool.name, observed_version, desired_version,
            )
            return None
        if observed_version < desired_version:
            return UpdateVersion(cluster=cluster, node_pool=pool)

    return None
