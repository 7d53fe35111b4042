"""KubeStore: a ResourceStore backed by the kubernetes Python client.

Every kind the controllers use is mapped to a kubernetes client API class
(core, apps, rbac or custom objects). Objects cross the boundary as plain
API dicts, converted to and from :class:`Cluster` / :class:`Resource`.
Change notifications come from one watch thread per handled kind, each
keeping a local cache so updates can be delivered with the old object.
Once a kind's cache has synced, ``get`` and ``list`` for it are served from
the cache and may lag the API server, like any watch-backed lister.

Requires: ``pip install navigator-controller[k8s]``
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from navigator.models import (
    API_GROUP,
    Cluster,
    ClusterKind,
    ClusterSpec,
    ClusterStatus,
    ObjectMeta,
    OwnerReference,
    Resource,
    ResourceKind,
)
from navigator.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceEventHandler,
    StoreError,
    StoreObject,
    format_selector,
    matches_selector,
)

logger = logging.getLogger(__name__)

_CRD_VERSION = "v1alpha1"
_WATCH_TIMEOUT_SECONDS = 300


def _check_kubernetes_available() -> None:
    """Raise ImportError with helpful message if kubernetes is not installed."""
    try:
        import kubernetes  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'kubernetes' package is required for KubeStore. "
            "Install it with: pip install navigator-controller[k8s]"
        ) from None


@dataclass(frozen=True)
class KindMapping:
    """Maps a resource kind to a kubernetes client API class.

    Typed APIs use ``<verb>_namespaced_<resource>`` methods; custom
    resources go through ``CustomObjectsApi`` with group/version/plural.
    ``top_level_body`` kinds keep their fields beside ``metadata`` rather
    than under ``spec``.
    """

    api_class: str
    resource: str = ""
    plural: str = ""
    group: str = API_GROUP
    version: str = _CRD_VERSION
    top_level_body: bool = False

    @property
    def custom(self) -> bool:
        return self.api_class == "CustomObjectsApi"


KIND_MAP: dict[str, KindMapping] = {
    ResourceKind.SERVICE: KindMapping(api_class="CoreV1Api", resource="service"),
    ResourceKind.POD: KindMapping(api_class="CoreV1Api", resource="pod"),
    ResourceKind.SERVICE_ACCOUNT: KindMapping(
        api_class="CoreV1Api", resource="service_account", top_level_body=True,
    ),
    ResourceKind.EVENT: KindMapping(
        api_class="CoreV1Api", resource="event", top_level_body=True,
    ),
    ResourceKind.STATEFUL_SET: KindMapping(api_class="AppsV1Api", resource="stateful_set"),
    ResourceKind.ROLE: KindMapping(
        api_class="RbacAuthorizationV1Api", resource="role", top_level_body=True,
    ),
    ResourceKind.ROLE_BINDING: KindMapping(
        api_class="RbacAuthorizationV1Api", resource="role_binding", top_level_body=True,
    ),
    ResourceKind.PILOT: KindMapping(api_class="CustomObjectsApi", plural="pilots"),
    ClusterKind.CASSANDRA: KindMapping(api_class="CustomObjectsApi", plural="cassandraclusters"),
    ClusterKind.ELASTICSEARCH: KindMapping(
        api_class="CustomObjectsApi", plural="elasticsearchclusters",
    ),
}

_CLUSTER_KINDS = {str(k) for k in ClusterKind}


# --- Conversion ---


def _meta_to_api(meta: ObjectMeta) -> dict[str, Any]:
    body: dict[str, Any] = {
        "name": meta.name,
        "namespace": meta.namespace,
        "labels": dict(meta.labels),
        "annotations": dict(meta.annotations),
        "ownerReferences": [
            {
                "apiVersion": ref.api_version,
                "kind": ref.kind,
                "name": ref.name,
                "uid": ref.uid,
                "controller": ref.controller,
                "blockOwnerDeletion": ref.block_owner_deletion,
            }
            for ref in meta.owner_references
        ],
    }
    if meta.uid:
        body["uid"] = meta.uid
    if meta.resource_version:
        body["resourceVersion"] = meta.resource_version
    return body


def _meta_from_api(body: Mapping[str, Any]) -> ObjectMeta:
    return ObjectMeta(
        name=body["name"],
        namespace=body.get("namespace") or "",
        uid=body.get("uid") or "",
        labels=body.get("labels") or {},
        annotations=body.get("annotations") or {},
        owner_references=[
            OwnerReference(
                api_version=ref.get("apiVersion", ""),
                kind=ref["kind"],
                name=ref["name"],
                uid=ref.get("uid", ""),
                controller=bool(ref.get("controller", False)),
                block_owner_deletion=bool(ref.get("blockOwnerDeletion", False)),
            )
            for ref in body.get("ownerReferences") or []
        ],
        resource_version=body.get("resourceVersion") or "",
    )


def to_api(obj: StoreObject) -> dict[str, Any]:
    """Render *obj* as a kubernetes API body."""
    body: dict[str, Any] = {
        "apiVersion": obj.api_version,
        "kind": str(obj.kind),
        "metadata": _meta_to_api(obj.metadata),
    }
    if isinstance(obj, Cluster):
        body["spec"] = obj.spec.model_dump(by_alias=True, exclude_none=True)
        body["status"] = obj.status.model_dump(by_alias=True)
        return body
    if KIND_MAP[obj.kind].top_level_body:
        body.update(obj.spec)
        return body
    body["spec"] = dict(obj.spec)
    if obj.status:
        body["status"] = dict(obj.status)
    return body


def from_api(kind: str, body: Mapping[str, Any]) -> StoreObject:
    """Convert a kubernetes API body of *kind* into a store object."""
    metadata = _meta_from_api(body.get("metadata") or {})
    api_version = body.get("apiVersion") or ""
    if kind in _CLUSTER_KINDS:
        return Cluster(
            kind=ClusterKind(kind),
            api_version=api_version or f"{API_GROUP}/{_CRD_VERSION}",
            metadata=metadata,
            spec=ClusterSpec.model_validate(body.get("spec") or {}),
            status=ClusterStatus.model_validate(body.get("status") or {}),
        )
    if KIND_MAP[kind].top_level_body:
        fields = {
            k: v for k, v in body.items() if k not in ("apiVersion", "kind", "metadata")
        }
        return Resource(kind=kind, api_version=api_version or "v1", metadata=metadata, spec=fields)
    return Resource(
        kind=kind,
        api_version=api_version or "v1",
        metadata=metadata,
        spec=body.get("spec") or {},
        status=body.get("status") or {},
    )


def _translate(exc: Exception, verb: str, kind: str, namespace: str, name: str) -> Exception:
    """Map a kubernetes ApiException onto the store error hierarchy."""
    # Detect kubernetes ApiException by class name to avoid import
    if type(exc).__name__ != "ApiException":
        return exc
    status = getattr(exc, "status", None)
    what = f"{kind} {namespace}/{name}"
    if status == 404:
        return NotFoundError(f"{what} not found")
    if status == 409:
        if verb == "create":
            return AlreadyExistsError(f"{what} already exists")
        return ConflictError(f"{what}: {getattr(exc, 'reason', 'conflict')}")
    return StoreError(f"K8s API error ({status}) on {verb} {what}: {getattr(exc, 'reason', exc)}")


# --- Store ---


class KubeStore:
    """ResourceStore talking to a real API server.

    Credential handling:
    - ``in_cluster=True`` uses the pod's service account
    - otherwise loads *kubeconfig* (default location when None) and *context*
    """

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        in_cluster: bool = False,
        namespace: str = "",
        watch_timeout: int = _WATCH_TIMEOUT_SECONDS,
    ) -> None:
        _check_kubernetes_available()
        self._kubeconfig = kubeconfig
        self._context = context
        self._in_cluster = in_cluster
        self._namespace = namespace
        self._watch_timeout = watch_timeout

        self._api_client: Any = None
        self._lock = threading.RLock()
        self._handlers: dict[str, list[ResourceEventHandler]] = {}
        self._caches: dict[str, dict[tuple[str, str], StoreObject]] = {}
        self._synced: set[str] = set()
        self._threads: dict[str, threading.Thread] = {}
        self._stop = threading.Event()

    # --- ResourceStore ---

    def get(self, kind: str, namespace: str, name: str) -> StoreObject:
        cache = self._cached(kind, namespace)
        if cache is not None:
            obj = cache.get((namespace, name))
            if obj is None:
                raise NotFoundError(f"{kind} {namespace}/{name} not found")
            return obj.model_copy(deep=True)

        mapping = KIND_MAP[kind]
        try:
            if mapping.custom:
                result = self._api(mapping).get_namespaced_custom_object(
                    mapping.group, mapping.version, namespace, mapping.plural, name,
                )
            else:
                method = getattr(self._api(mapping), f"read_namespaced_{mapping.resource}")
                result = method(name=name, namespace=namespace)
        except Exception as exc:
            raise _translate(exc, "get", kind, namespace, name) from exc
        return from_api(kind, self._serialize(result))

    def list(
        self,
        kind: str,
        namespace: str,
        selector: Mapping[str, str] | None = None,
    ) -> list[StoreObject]:
        cache = self._cached(kind, namespace)
        if cache is not None:
            return [
                obj.model_copy(deep=True)
                for (ns, _), obj in sorted(cache.items(), key=lambda item: item[0])
                if (not namespace or ns == namespace)
                and matches_selector(obj.metadata.labels, selector)
            ]

        body = self._list_raw(kind, namespace, selector)
        return [from_api(kind, item) for item in body.get("items") or []]

    def create(self, obj: StoreObject) -> StoreObject:
        mapping = KIND_MAP[obj.kind]
        body = to_api(obj)
        body["metadata"].pop("resourceVersion", None)
        ns, name = obj.metadata.namespace, obj.metadata.name
        try:
            if mapping.custom:
                result = self._api(mapping).create_namespaced_custom_object(
                    mapping.group, mapping.version, ns, mapping.plural, body,
                )
            else:
                method = getattr(self._api(mapping), f"create_namespaced_{mapping.resource}")
                result = method(namespace=ns, body=body)
        except Exception as exc:
            raise _translate(exc, "create", obj.kind, ns, name) from exc
        return from_api(obj.kind, self._serialize(result))

    def update(self, obj: StoreObject) -> StoreObject:
        return self._replace(obj, status=False)

    def update_status(self, obj: StoreObject) -> StoreObject:
        return self._replace(obj, status=True)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        mapping = KIND_MAP[kind]
        try:
            if mapping.custom:
                self._api(mapping).delete_namespaced_custom_object(
                    mapping.group, mapping.version, namespace, mapping.plural, name,
                )
            else:
                method = getattr(self._api(mapping), f"delete_namespaced_{mapping.resource}")
                method(name=name, namespace=namespace)
        except Exception as exc:
            raise _translate(exc, "delete", kind, namespace, name) from exc

    def add_event_handler(self, kind: str, handler: ResourceEventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)
            cached = list(self._caches.get(kind, {}).values())
            if kind not in self._threads:
                thread = threading.Thread(
                    target=self._watch_loop,
                    args=(kind,),
                    name=f"watch-{kind}",
                    daemon=True,
                )
                self._threads[kind] = thread
                thread.start()
        for obj in cached:
            handler.on_add(obj.model_copy(deep=True))

    def has_synced(self) -> bool:
        with self._lock:
            return set(self._threads) <= self._synced

    def stop(self) -> None:
        """Stop every watch thread (they exit at the next event or timeout)."""
        self._stop.set()

    # --- Private: watch cache reads ---

    def _cached(
        self, kind: str, namespace: str,
    ) -> dict[tuple[str, str], StoreObject] | None:
        """Snapshot of the synced cache for *kind*, or None if it cannot answer.

        A cache scoped to one namespace cannot answer reads for another.
        """
        with self._lock:
            if kind not in self._synced:
                return None
            if self._namespace and namespace != self._namespace:
                return None
            return dict(self._caches.get(kind, {}))

    # --- Private: client setup ---

    def _get_api_client(self) -> Any:
        """Build (once) a kubernetes ApiClient from the constructor config."""
        with self._lock:
            if self._api_client is not None:
                return self._api_client

            from kubernetes import client, config

            if self._in_cluster:
                config.load_incluster_config()
            else:
                kwargs: dict[str, Any] = {}
                if self._kubeconfig:
                    kwargs["config_file"] = self._kubeconfig
                if self._context:
                    kwargs["context"] = self._context
                config.load_kube_config(**kwargs)
            self._api_client = client.ApiClient()
            return self._api_client

    def _api(self, mapping: KindMapping) -> Any:
        from kubernetes import client

        return getattr(client, mapping.api_class)(self._get_api_client())

    def _serialize(self, result: Any) -> dict[str, Any]:
        return self._get_api_client().sanitize_for_serialization(result)

    # --- Private: verbs ---

    def _list_call(self, kind: str, namespace: str) -> tuple[Any, dict[str, Any]]:
        """Return the list function for *kind* and its positional-free kwargs."""
        mapping = KIND_MAP[kind]
        api = self._api(mapping)
        if mapping.custom:
            base = {"group": mapping.group, "version": mapping.version, "plural": mapping.plural}
            if namespace:
                return api.list_namespaced_custom_object, {**base, "namespace": namespace}
            return api.list_cluster_custom_object, base
        if namespace:
            return getattr(api, f"list_namespaced_{mapping.resource}"), {"namespace": namespace}
        return getattr(api, f"list_{mapping.resource}_for_all_namespaces"), {}

    def _list_raw(
        self,
        kind: str,
        namespace: str,
        selector: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        fn, kwargs = self._list_call(kind, namespace)
        if selector:
            kwargs["label_selector"] = format_selector(selector)
        try:
            return self._serialize(fn(**kwargs))
        except Exception as exc:
            raise _translate(exc, "list", kind, namespace, "*") from exc

    def _replace(self, obj: StoreObject, status: bool) -> StoreObject:
        mapping = KIND_MAP[obj.kind]
        body = to_api(obj)
        ns, name = obj.metadata.namespace, obj.metadata.name
        verb = "update_status" if status else "update"
        try:
            if mapping.custom:
                api = self._api(mapping)
                method = (
                    api.replace_namespaced_custom_object_status
                    if status else api.replace_namespaced_custom_object
                )
                result = method(mapping.group, mapping.version, ns, mapping.plural, name, body)
            else:
                suffix = "_status" if status else ""
                method = getattr(
                    self._api(mapping), f"replace_namespaced_{mapping.resource}{suffix}",
                )
                result = method(name=name, namespace=ns, body=body)
        except Exception as exc:
            raise _translate(exc, verb, obj.kind, ns, name) from exc
        return from_api(obj.kind, self._serialize(result))

    # --- Private: watches ---

    def _watch_loop(self, kind: str) -> None:
        from kubernetes import watch

        while not self._stop.is_set():
            try:
                resource_version = self._relist(kind)
                fn, kwargs = self._list_call(kind, self._namespace)
                w = watch.Watch()
                for event in w.stream(
                    fn,
                    resource_version=resource_version,
                    timeout_seconds=self._watch_timeout,
                    **kwargs,
                ):
                    if self._stop.is_set():
                        w.stop()
                        break
                    self._dispatch(kind, event)
            except Exception:
                logger.exception("Watch for %s failed; relisting", kind)
                self._stop.wait(1.0)

    def _relist(self, kind: str) -> str:
        """List *kind*, reconcile the local cache and notify handlers."""
        body = self._list_raw(kind, self._namespace)
        fresh = {}
        for item in body.get("items") or []:
            obj = from_api(kind, item)
            fresh[(obj.metadata.namespace, obj.metadata.name)] = obj

        with self._lock:
            old = self._caches.get(kind, {})
            self._caches[kind] = fresh
            self._synced.add(kind)
            handlers = list(self._handlers.get(kind, []))

        for key, obj in fresh.items():
            for handler in handlers:
                if key in old:
                    handler.on_update(old[key].model_copy(deep=True), obj.model_copy(deep=True))
                else:
                    handler.on_add(obj.model_copy(deep=True))
        for key, obj in old.items():
            if key not in fresh:
                for handler in handlers:
                    handler.on_delete(obj.model_copy(deep=True))
        return (body.get("metadata") or {}).get("resourceVersion") or ""

    def _dispatch(self, kind: str, event: Mapping[str, Any]) -> None:
        event_type = event.get("type")
        raw = event.get("raw_object")
        if raw is None:
            raw = self._serialize(event.get("object"))
        if event_type == "ERROR":
            raise StoreError(f"watch error for {kind}: {raw}")

        obj = from_api(kind, raw)
        key = (obj.metadata.namespace, obj.metadata.name)
        with self._lock:
            cache = self._caches.setdefault(kind, {})
            old = cache.get(key)
            if event_type == "DELETED":
                cache.pop(key, None)
            else:
                cache[key] = obj
            handlers = list(self._handlers.get(kind, []))

        for handler in handlers:
            if event_type == "DELETED":
                handler.on_delete(obj.model_copy(deep=True))
            elif old is None:
                handler.on_add(obj.model_copy(deep=True))
            else:
                handler.on_update(old.model_copy(deep=True), obj.model_copy(deep=True))
