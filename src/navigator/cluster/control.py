"""One reconciliation of one cluster.

``ClusterControl.sync`` runs the sub-resource controls in a fixed order,
stopping at the first failure. Each failure is reported as a Warning
``ErrSync`` event using that step's message before it propagates. Once
every step has succeeded the recomputed status is persisted (if it
changed), the planner picks at most one action and the action is
executed. A fully successful pass ends with a Normal ``SuccessSync`` event.

Usage::

    control = new_cluster_control(store, recorder)
    action = control.sync(cluster)     # raises on failure
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from navigator.cluster.actions import Action, ActionError, describe, execute_action
from navigator.cluster.nodepool import NodePoolControl
from navigator.cluster.pilot import PilotControl
from navigator.cluster.planner import next_action
from navigator.cluster.rbac import role_binding_control, role_control, service_account_control
from navigator.cluster.seedlabeller import SeedLabellerControl
from navigator.cluster.service import (
    ServiceControl,
    nodes_service_for_cluster,
    seed_provider_service_for_cluster,
)
from navigator.events import ERR_SYNC, SUCCESS_SYNC, EventRecorder, EventType, eventf
from navigator.models import Cluster
from navigator.store.base import ResourceStore

logger = logging.getLogger(__name__)

MESSAGE_ERROR_SYNC_SERVICE_ACCOUNT = "Error syncing service account: %s"
MESSAGE_ERROR_SYNC_ROLE = "Error syncing role: %s"
MESSAGE_ERROR_SYNC_ROLE_BINDING = "Error syncing role binding: %s"
MESSAGE_ERROR_SYNC_SERVICE = "Error syncing service: %s"
MESSAGE_ERROR_SYNC_NODE_POOLS = "Error syncing node pools: %s"
MESSAGE_ERROR_SYNC_PILOTS = "Error syncing pilots: %s"
MESSAGE_ERROR_SYNC_SEED_LABELS = "Error syncing seed labels: %s"
MESSAGE_ERROR_SYNC = "Error syncing: %s"
MESSAGE_SUCCESS_SYNC = "Successfully synced %s"


@runtime_checkable
class SubResourceControl(Protocol):
    """Brings one family of derived resources in line with a cluster."""

    def sync(self, cluster: Cluster) -> None: ...


@dataclass(frozen=True)
class SyncStep:
    control: SubResourceControl
    error_message: str


class ClusterControl:
    """Runs the reconciliation pipeline for a single cluster."""

    def __init__(
        self,
        store: ResourceStore,
        recorder: EventRecorder,
        seed_provider_service_control: SubResourceControl,
        nodes_service_control: SubResourceControl,
        nodepool_control: SubResourceControl,
        pilot_control: SubResourceControl,
        service_account_control: SubResourceControl,
        role_control: SubResourceControl,
        role_binding_control: SubResourceControl,
        seed_labeller_control: SubResourceControl,
        execute: Callable[[Action, ResourceStore], None] = execute_action,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._execute = execute
        self._steps = [
            SyncStep(seed_provider_service_control, MESSAGE_ERROR_SYNC_SERVICE),
            SyncStep(nodes_service_control, MESSAGE_ERROR_SYNC_SERVICE),
            SyncStep(nodepool_control, MESSAGE_ERROR_SYNC_NODE_POOLS),
            SyncStep(pilot_control, MESSAGE_ERROR_SYNC_PILOTS),
            SyncStep(service_account_control, MESSAGE_ERROR_SYNC_SERVICE_ACCOUNT),
            SyncStep(role_control, MESSAGE_ERROR_SYNC_ROLE),
            SyncStep(role_binding_control, MESSAGE_ERROR_SYNC_ROLE_BINDING),
            SyncStep(seed_labeller_control, MESSAGE_ERROR_SYNC_SEED_LABELS),
        ]

    @property
    def steps(self) -> list[SyncStep]:
        return list(self._steps)

    def sync(self, cluster: Cluster) -> Action | None:
        """Reconcile *cluster* once. Returns the action executed, if any.

        *cluster* is mutated: its status is replaced by the observed state.

        Raises:
            ActionError: If the planned action failed.
            Exception: Whatever the first failing step raised.
        """
        logger.debug("Syncing %s %s", cluster.kind, cluster.key)
        observed_before = cluster.status.model_copy(deep=True)

        for step in self._steps:
            try:
                step.control.sync(cluster)
            except Exception as exc:
                eventf(
                    self._recorder, cluster, EventType.WARNING, ERR_SYNC,
                    step.error_message, exc,
                )
                raise

        if cluster.status != observed_before:
            try:
                self._store.update_status(cluster)
            except Exception as exc:
                eventf(
                    self._recorder, cluster, EventType.WARNING, ERR_SYNC,
                    MESSAGE_ERROR_SYNC, exc,
                )
                raise

        action = next_action(cluster)
        if action is not None:
            logger.info("Executing action %s for %s", action.name, cluster.key)
            try:
                self._execute(action, self._store)
            except Exception as exc:
                eventf(
                    self._recorder, cluster, EventType.WARNING, ERR_SYNC,
                    MESSAGE_ERROR_SYNC, exc,
                )
                raise ActionError(f"failure while executing action: {exc}") from exc
            self._recorder.event(cluster, EventType.NORMAL, action.name, describe(action))

        eventf(
            self._recorder, cluster, EventType.NORMAL, SUCCESS_SYNC,
            MESSAGE_SUCCESS_SYNC, cluster.kind,
        )
        return action


def new_cluster_control(store: ResourceStore, recorder: EventRecorder) -> ClusterControl:
    """Build a ClusterControl wired with the standard sub-resource controls."""
    return ClusterControl(
        store=store,
        recorder=recorder,
        seed_provider_service_control=ServiceControl(store, seed_provider_service_for_cluster),
        nodes_service_control=ServiceControl(store, nodes_service_for_cluster),
        nodepool_control=NodePoolControl(store),
        pilot_control=PilotControl(store),
        service_account_control=service_account_control(store),
        role_control=role_control(store),
        role_binding_control=role_binding_control(store),
        seed_labeller_control=SeedLabellerControl(store),
    )
