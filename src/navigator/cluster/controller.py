"""Queue-driven controller for one cluster kind.

Watches clusters of its kind plus the child kinds it derives. Any change
to a cluster, or to a child owned by one, enqueues the cluster's key. A
worker then re-reads the cluster from the store and runs
:class:`~navigator.cluster.control.ClusterControl` on it.
"""

from __future__ import annotations

import logging

from navigator.cluster.control import ClusterControl, new_cluster_control
from navigator.controller.base import (
    Controller,
    OwnerQueuingEventHandler,
    QueuingEventHandler,
    key_for,
    split_key,
)
from navigator.controller.registry import ControllerContext
from navigator.events import EventRecorder
from navigator.models import Cluster, ClusterKind, ResourceKind
from navigator.store.base import NotFoundError, ResourceStore, StoreObject
from navigator.workqueue.queue import RateLimitingQueue
from navigator.workqueue.ratelimit import ItemExponentialFailureRateLimiter

logger = logging.getLogger(__name__)

WATCHED_CHILD_KINDS = (
    ResourceKind.SERVICE,
    ResourceKind.STATEFUL_SET,
    ResourceKind.SERVICE_ACCOUNT,
    ResourceKind.ROLE,
    ResourceKind.ROLE_BINDING,
    ResourceKind.PILOT,
    ResourceKind.POD,
)


class ClusterController(Controller):
    """Controller reconciling every cluster of *kind* in *namespace*."""

    def __init__(
        self,
        kind: ClusterKind,
        store: ResourceStore,
        recorder: EventRecorder,
        namespace: str = "",
        queue: RateLimitingQueue | None = None,
        control: ClusterControl | None = None,
        cache_sync_timeout: float = 30.0,
        resync_period: float = 0.0,
    ) -> None:
        self._kind = kind
        self._store = store
        self._namespace = namespace
        self._control = control or new_cluster_control(store, recorder)
        queue = queue or RateLimitingQueue(name=str(kind))
        super().__init__(
            name=str(kind),
            queue=queue,
            sync_handler=self.sync,
            informers_synced=[store.has_synced],
            cache_sync_timeout=cache_sync_timeout,
            resync_period=resync_period,
            resync_keys=self._cluster_keys,
        )

        store.add_event_handler(kind, QueuingEventHandler(queue, accept=self._in_namespace))
        owner_handler = OwnerQueuingEventHandler(queue, str(kind), accept=self._in_namespace)
        for child_kind in WATCHED_CHILD_KINDS:
            store.add_event_handler(child_kind, owner_handler)

    @property
    def kind(self) -> ClusterKind:
        return self._kind

    def sync(self, key: str) -> None:
        """Reconcile the cluster named by *key*. A deleted cluster is a no-op."""
        namespace, name = split_key(key)
        try:
            cluster = self._store.get(self._kind, namespace, name)
        except NotFoundError:
            logger.info("%s %r in work queue no longer exists", self._kind, key)
            return
        if not isinstance(cluster, Cluster):
            raise TypeError(f"Expected a {self._kind} for {key!r}, got {type(cluster).__name__}")
        self._control.sync(cluster)

    def _in_namespace(self, obj: StoreObject) -> bool:
        return not self._namespace or obj.metadata.namespace == self._namespace

    def _cluster_keys(self) -> list[str]:
        return [key_for(c) for c in self._store.list(self._kind, self._namespace)]


def cassandra_controller(ctx: ControllerContext) -> ClusterController:
    return _build(ClusterKind.CASSANDRA, ctx)


def elasticsearch_controller(ctx: ControllerContext) -> ClusterController:
    return _build(ClusterKind.ELASTICSEARCH, ctx)


def _build(kind: ClusterKind, ctx: ControllerContext) -> ClusterController:
    queue = RateLimitingQueue(
        rate_limiter=ItemExponentialFailureRateLimiter(ctx.rate_limit),
        name=str(kind),
    )
    return ClusterController(
        kind=kind,
        store=ctx.store,
        recorder=ctx.recorder,
        namespace=ctx.namespace,
        queue=queue,
        cache_sync_timeout=ctx.cache_sync_timeout,
        resync_period=ctx.resync_period,
    )
