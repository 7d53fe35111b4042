"""Generic queue-driven controller loop.

A Controller owns a RateLimitingQueue of ``namespace/name`` keys and a pool
of worker threads. Each worker pops a key, hands it to the sync handler,
then either forgets the key (success) or re-queues it with backoff
(failure). The queue guarantees a key is never synced by two workers at
once.

Usage::

    queue = RateLimitingQueue(name="cassandra")
    controller = Controller(
        name="cassandra",
        queue=queue,
        sync_handler=my_sync,            # (key: str) -> None, raises on failure
        informers_synced=[store.has_synced],
    )
    store.add_event_handler("CassandraCluster", QueuingEventHandler(queue))

    stop = threading.Event()
    controller.run(workers=2, stop_event=stop)   # blocks until stop is set
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence

from navigator.store.base import StoreObject
from navigator.workqueue.queue import RateLimitingQueue

logger = logging.getLogger(__name__)


class CacheSyncError(Exception):
    """The store did not finish its initial listing in time."""


class InvalidKeyError(ValueError):
    """A work-queue key could not be split into namespace and name."""


# --- Keys ---


def key_for(obj: StoreObject) -> str:
    """Return the work-queue key (``namespace/name``) for *obj*."""
    if obj.metadata.namespace:
        return f"{obj.metadata.namespace}/{obj.metadata.name}"
    return obj.metadata.name


def split_key(key: str) -> tuple[str, str]:
    """Split a ``namespace/name`` (or bare ``name``) key.

    Raises:
        InvalidKeyError: If the key has more than one ``/`` or an empty name.
    """
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise InvalidKeyError(f"unexpected key format: {key!r}")


def wait_for_cache_sync(
    checks: Sequence[Callable[[], bool]],
    stop_event: threading.Event,
    timeout: float,
    poll_interval: float = 0.1,
    _clock: Callable[[], float] | None = None,
) -> bool:
    """Poll *checks* until all pass. False on timeout or if *stop_event* is set."""
    clock = _clock or time.monotonic
    deadline = clock() + timeout
    while not all(check() for check in checks):
        if stop_event.is_set() or clock() >= deadline:
            return False
        stop_event.wait(poll_interval)
    return True


# --- Event handlers ---


class QueuingEventHandler:
    """Store event handler that enqueues the key of every changed object."""

    def __init__(
        self,
        queue: RateLimitingQueue,
        accept: Callable[[StoreObject], bool] | None = None,
    ) -> None:
        self._queue = queue
        self._accept = accept

    def _enqueue(self, obj: StoreObject) -> None:
        if self._accept is not None and not self._accept(obj):
            return
        self._queue.add(key_for(obj))

    def on_add(self, obj: StoreObject) -> None:
        self._enqueue(obj)

    def on_update(self, old: StoreObject, new: StoreObject) -> None:
        self._enqueue(new)

    def on_delete(self, obj: StoreObject) -> None:
        self._enqueue(obj)


class OwnerQueuingEventHandler:
    """Enqueue the controlling owner of a changed child object.

    Children whose controller reference is not of *owner_kind*, or that
    *accept* rejects, are ignored.
    """

    def __init__(
        self,
        queue: RateLimitingQueue,
        owner_kind: str,
        accept: Callable[[StoreObject], bool] | None = None,
    ) -> None:
        self._queue = queue
        self._owner_kind = owner_kind
        self._accept = accept

    def _enqueue_owner(self, obj: StoreObject) -> None:
        if self._accept is not None and not self._accept(obj):
            return
        ref = obj.metadata.controller_ref()
        if ref is None or ref.kind != self._owner_kind:
            return
        if obj.metadata.namespace:
            self._queue.add(f"{obj.metadata.namespace}/{ref.name}")
        else:
            self._queue.add(ref.name)

    def on_add(self, obj: StoreObject) -> None:
        self._enqueue_owner(obj)

    def on_update(self, old: StoreObject, new: StoreObject) -> None:
        # Resource-version bumps with identical content still enqueue; the
        # sync is idempotent.
        self._enqueue_owner(new)

    def on_delete(self, obj: StoreObject) -> None:
        self._enqueue_owner(obj)


# --- Controller ---


class Controller:
    """Worker pool draining a rate-limited queue into a sync handler."""

    def __init__(
        self,
        name: str,
        queue: RateLimitingQueue,
        sync_handler: Callable[[str], None],
        informers_synced: Sequence[Callable[[], bool]] = (),
        cache_sync_timeout: float = 30.0,
        resync_period: float = 0.0,
        resync_keys: Callable[[], Iterable[str]] | None = None,
    ) -> None:
        self._name = name
        self._queue = queue
        self._sync_handler = sync_handler
        self._informers_synced = list(informers_synced)
        self._cache_sync_timeout = cache_sync_timeout
        self._resync_period = resync_period
        self._resync_keys = resync_keys

    @property
    def name(self) -> str:
        return self._name

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    def run(self, workers: int, stop_event: threading.Event) -> None:
        """Process keys with *workers* threads until *stop_event* is set.

        Waits for the store caches first. Once stopped, the queue is shut
        down, in-flight syncs complete and every worker is joined before
        returning.

        Raises:
            CacheSyncError: If the caches did not sync within the timeout.
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")

        logger.info("Starting %s controller", self._name)
        logger.info("Waiting for %s caches to sync", self._name)
        if not wait_for_cache_sync(
            self._informers_synced, stop_event, self._cache_sync_timeout,
        ):
            self._queue.shut_down()
            if stop_event.is_set():
                logger.info("Stopped %s controller before caches synced", self._name)
                return
            raise CacheSyncError(f"timed out waiting for {self._name} caches to sync")

        logger.info("Starting %d %s workers", workers, self._name)
        threads = [
            threading.Thread(
                target=self._worker,
                name=f"{self._name}-worker-{i}",
                daemon=True,
            )
            for i in range(workers)
        ]
        if self._resync_period > 0 and self._resync_keys is not None:
            threads.append(threading.Thread(
                target=self._resync_loop,
                args=(stop_event,),
                name=f"{self._name}-resync",
                daemon=True,
            ))
        for thread in threads:
            thread.start()

        stop_event.wait()
        logger.info("Shutting down %s workers", self._name)
        self._queue.shut_down()
        for thread in threads:
            thread.join()
        logger.info("Stopped %s controller", self._name)

    def process_next_work_item(self) -> bool:
        """Sync one key from the queue. Returns False once the queue is shut down."""
        key, shutdown = self._queue.get()
        if shutdown or key is None:
            return False

        try:
            self._sync_handler(key)
        except InvalidKeyError as exc:
            logger.error("Dropping invalid key %r: %s", key, exc)
            self._queue.forget(key)
        except Exception as exc:
            logger.error("error syncing %r, requeuing: %s", key, exc)
            logger.debug("Sync failure for %r", key, exc_info=True)
            self._queue.add_rate_limited(key)
        else:
            self._queue.forget(key)
            logger.debug("Successfully synced %r", key)
        finally:
            self._queue.done(key)
        return True

    def _worker(self) -> None:
        while self.process_next_work_item():
            pass

    def _resync_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._resync_period):
            for key in self._resync_keys():
                self._queue.add(key)
