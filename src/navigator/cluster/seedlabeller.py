"""Seed labelling.

The seed provider service selects pods labelled ``seed=true``. For every
owned node pool set, the first ``pool.seeds`` pods by ordinal carry the
label and every other pod of the set has it removed. Pods that do not
exist yet are skipped.
"""

from __future__ import annotations

import logging

from navigator.cluster.util import NODE_POOL_NAME_LABEL, SEED_LABEL, statefulsets_for_cluster
from navigator.models import Cluster, ResourceKind
from navigator.store.base import NotFoundError, ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_SEEDS = 1


class SeedLabellerControl:
    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    def sync(self, cluster: Cluster) -> None:
        for ss in statefulsets_for_cluster(self._store, cluster).values():
            pool = cluster.spec.get_node_pool(ss.metadata.labels.get(NODE_POOL_NAME_LABEL, ""))
            seeds = pool.seeds if pool is not None else DEFAULT_SEEDS
            replicas = ss.spec.get("replicas") or 0
            for ordinal in range(replicas):
                self._label_pod(ss.namespace, f"{ss.name}-{ordinal}", ordinal < seeds)

    def _label_pod(self, namespace: str, name: str, seed: bool) -> None:
        try:
            pod = self._store.get(ResourceKind.POD, namespace, name)
        except NotFoundError:
            return

        labels = pod.metadata.labels
        if seed:
            if labels.get(SEED_LABEL) == "true":
                return
            labels[SEED_LABEL] = "true"
        else:
            if SEED_LABEL not in labels:
                return
            del labels[SEED_LABEL]

        logger.debug("Setting %s=%s on pod %s/%s", SEED_LABEL, seed, namespace, name)
        self._store.update(pod)
