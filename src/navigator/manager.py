"""Composition root: builds the store, recorder and controllers, and runs them.

Usage::

    cfg = load_config()
    manager = Manager.from_config(cfg)
    manager.run(stop_event)          # blocks until stop_event is set
"""

from __future__ import annotations

import logging
import threading

from navigator.cluster.controller import cassandra_controller, elasticsearch_controller
from navigator.config import ConfigError, ControllerConfig
from navigator.controller.base import Controller
from navigator.controller.registry import ControllerContext, ControllerRegistry, RegistryError
from navigator.events import EventRecorder, StoreRecorder
from navigator.models import ClusterKind
from navigator.store.base import ResourceStore
from navigator.store.memory import InMemoryStore

logger = logging.getLogger(__name__)


def default_registry() -> ControllerRegistry:
    """The controllers shipped with Navigator, keyed by the kind they reconcile."""
    registry = ControllerRegistry()
    registry.register(str(ClusterKind.CASSANDRA), cassandra_controller)
    registry.register(str(ClusterKind.ELASTICSEARCH), elasticsearch_controller)
    return registry


def build_store(cfg: ControllerConfig, in_memory: bool = False) -> ResourceStore:
    """Return an InMemoryStore, or a KubeStore configured from *cfg*."""
    if in_memory:
        return InMemoryStore()
    from navigator.store.kube import KubeStore

    return KubeStore(
        kubeconfig=cfg.kubeconfig,
        context=cfg.context,
        in_cluster=cfg.in_cluster,
        namespace=cfg.namespace,
    )


class Manager:
    """Runs a set of controllers against one store until stopped."""

    def __init__(
        self,
        controllers: list[Controller],
        workers: int,
        store: ResourceStore | None = None,
    ) -> None:
        self._controllers = controllers
        self._workers = workers
        self._store = store
        self._errors: list[BaseException] = []

    @classmethod
    def from_config(
        cls,
        cfg: ControllerConfig,
        store: ResourceStore | None = None,
        recorder: EventRecorder | None = None,
        registry: ControllerRegistry | None = None,
    ) -> Manager:
        """Build every controller named in *cfg* (default: all registered).

        Raises:
            ConfigError: If *cfg* names a controller that is not registered.
        """
        registry = registry or default_registry()
        store = store or build_store(cfg)
        ctx = ControllerContext(
            store=store,
            recorder=recorder or StoreRecorder(store),
            namespace=cfg.namespace,
            cache_sync_timeout=cfg.cache_sync_timeout,
            resync_period=cfg.resync_seconds,
            rate_limit=cfg.rate_limit,
        )
        names = list(cfg.controllers) if cfg.controllers is not None else registry.names()
        controllers = []
        for name in names:
            try:
                controllers.append(registry.build(name, ctx))
            except RegistryError as exc:
                raise ConfigError(str(exc)) from exc
        return cls(controllers, workers=cfg.workers, store=store)

    @property
    def controllers(self) -> list[Controller]:
        return list(self._controllers)

    @property
    def errors(self) -> list[BaseException]:
        """Errors that stopped individual controllers."""
        return list(self._errors)

    def run(self, stop_event: threading.Event) -> None:
        """Run every controller in its own thread until *stop_event* is set.

        A controller that fails to start (for example its caches never
        synced) is logged and stops the whole manager.
        """
        threads = [
            threading.Thread(
                target=self._run_one,
                args=(controller, stop_event),
                name=f"controller-{controller.name}",
                daemon=True,
            )
            for controller in self._controllers
        ]
        logger.info("Starting %d controllers", len(threads))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        stop = getattr(self._store, "stop", None)
        if callable(stop):
            stop()
        logger.info("All controllers stopped")

    def _run_one(self, controller: Controller, stop_event: threading.Event) -> None:
        try:
            controller.run(self._workers, stop_event)
        except Exception as exc:
            logger.exception("Controller %s failed", controller.name)
            self._errors.append(exc)
            stop_event.set()
