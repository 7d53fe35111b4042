"""Per-node pilot agent.

Runs beside a database process and keeps that node's ``Pilot`` resource
current: the version the process reports and a heartbeat timestamp. It
is a Controller with exactly one worker, since every sync acts on the
same local process.

Usage::

    agent = PilotAgent(
        store=store,
        namespace="db",
        pilot_name="cass-demo-ringnodes-0",
        version_source=read_running_version,   # () -> str | None
    )
    agent.serve(stop_event)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from navigator.controller.base import (
    Controller,
    QueuingEventHandler,
    key_for,
    split_key,
)
from navigator.models import ResourceKind
from navigator.store.base import NotFoundError, ResourceStore, StoreObject
from navigator.workqueue.queue import RateLimitingQueue

logger = logging.getLogger(__name__)

WORKERS = 1


class PilotAgent(Controller):
    """Reports the local process's version on its own Pilot resource."""

    def __init__(
        self,
        store: ResourceStore,
        namespace: str,
        pilot_name: str,
        version_source: Callable[[], str | None],
        heartbeat_interval: float = 30.0,
        cache_sync_timeout: float = 30.0,
        queue: RateLimitingQueue | None = None,
        _clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._pilot_name = pilot_name
        self._version_source = version_source
        self._heartbeat = timedelta(seconds=heartbeat_interval)
        self._clock = _clock or (lambda: datetime.now(tz=UTC))
        queue = queue or RateLimitingQueue(name=f"pilot-{pilot_name}")
        super().__init__(
            name=f"pilot-{pilot_name}",
            queue=queue,
            sync_handler=self.sync,
            informers_synced=[store.has_synced],
            cache_sync_timeout=cache_sync_timeout,
            resync_period=heartbeat_interval,
            resync_keys=lambda: [self.key],
        )
        store.add_event_handler(ResourceKind.PILOT, QueuingEventHandler(queue, accept=self._is_own))

    @property
    def key(self) -> str:
        return f"{self._namespace}/{self._pilot_name}" if self._namespace else self._pilot_name

    def run(self, workers: int, stop_event: threading.Event) -> None:
        """Like :meth:`Controller.run`, but only a single worker is allowed."""
        if workers != WORKERS:
            raise ValueError(f"the pilot agent runs exactly {WORKERS} worker, got {workers}")
        super().run(workers, stop_event)

    def serve(self, stop_event: threading.Event) -> None:
        """Run until *stop_event* is set."""
        self.run(WORKERS, stop_event)

    def sync(self, key: str) -> None:
        namespace, name = split_key(key)
        if (namespace, name) != (self._namespace, self._pilot_name):
            logger.debug("Ignoring pilot %r; this agent is %r", key, self.key)
            return
        try:
            pilot = self._store.get(ResourceKind.PILOT, namespace, name)
        except NotFoundError:
            logger.info("Pilot %r does not exist yet", key)
            return

        version = self._version_source()
        now = self._clock()
        last_seen = _parse_timestamp(pilot.status.get("lastSeen"))
        if (
            pilot.status.get("version") == version
            and last_seen is not None
            and now - last_seen < self._heartbeat
        ):
            return

        pilot.status["version"] = version
        pilot.status["lastSeen"] = now.isoformat()
        logger.debug("Reporting version %s for pilot %r", version, key)
        self._store.update_status(pilot)

    def _is_own(self, obj: StoreObject) -> bool:
        return key_for(obj) == self.key


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
