"""Core data models for Navigator.

Defines the schemas for:
- Object metadata and owner references (shared by every resource)
- Cluster specs (desired state: node pools, images, version)
- Cluster status (observed state, rebuilt every reconciliation)
- Generic child resources (services, workload sets, RBAC, pilots, pods)
"""

from __future__ import annotations

import enum
from typing import Any

import semver
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

API_GROUP = "navigator.jetstack.io"
API_VERSION = f"{API_GROUP}/v1alpha1"

DEFAULT_DATACENTER = "navigator-default-datacenter"

# Spec and status models accept and emit the API's camelCase field names.
_API_FIELDS = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_version(value: str) -> semver.Version:
    """Parse a ``MAJOR.MINOR.PATCH[-prerelease][+build]`` version.

    Build metadata is dropped, so ``3.11.2+build1`` orders equal to ``3.11.2``.
    Prereleases order below their release.

    Raises ValueError for anything that is not a semantic version.
    """
    try:
        version = semver.Version.parse(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid version {value!r}: {exc}") from exc
    return version.replace(build=None)


# --- Enums ---


class ClusterKind(enum.StrEnum):
    CASSANDRA = "CassandraCluster"
    ELASTICSEARCH = "ElasticsearchCluster"


class ResourceKind(enum.StrEnum):
    SERVICE = "Service"
    STATEFUL_SET = "StatefulSet"
    SERVICE_ACCOUNT = "ServiceAccount"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    PILOT = "Pilot"
    POD = "Pod"
    EVENT = "Event"


# --- Metadata ---


class OwnerReference(BaseModel):
    """Back-pointer from a child resource to its controlling parent."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


class ObjectMeta(BaseModel):
    """Metadata common to all objects held by the resource store."""

    name: str = Field(..., min_length=1)
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    resource_version: str = ""

    def controller_ref(self) -> OwnerReference | None:
        """Return the owner reference flagged as controller, if any."""
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None


# --- Cluster Spec ---


class ImageSpec(BaseModel):
    """A container image reference."""

    model_config = _API_FIELDS

    repository: str
    tag: str = ""
    pull_policy: str = "IfNotPresent"

    def with_tag(self, tag: str) -> str:
        return f"{self.repository}:{tag}"


class NodePool(BaseModel):
    """A named, homogeneous group of database nodes.

    ``name`` is part of every derived resource name, so it may not contain
    ``-`` (the name parser splits on it).
    """

    model_config = _API_FIELDS

    name: str = Field(..., pattern=r"^[a-z0-9]+$", max_length=40)
    replicas: int = Field(1, ge=0)
    version: str | None = None
    roles: list[str] = Field(default_factory=list)
    resources: dict[str, Any] = Field(default_factory=dict)
    node_selector: dict[str, str] = Field(default_factory=dict)
    config: dict[str, str] = Field(default_factory=dict)
    datacenter: str = ""
    rack: str = ""
    seeds: int = Field(1, ge=0)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str | None) -> str | None:
        if value is not None:
            parse_version(value)
        return value

    @model_validator(mode="after")
    def _apply_defaults(self) -> NodePool:
        if not self.datacenter:
            self.datacenter = DEFAULT_DATACENTER
        if not self.rack:
            self.rack = self.name
        return self


class ClusterSpec(BaseModel):
    """Desired state of a database cluster."""

    model_config = _API_FIELDS

    version: str
    node_pools: list[NodePool] = Field(default_factory=list)
    image: ImageSpec
    pilot_image: ImageSpec
    sysctls: list[str] = Field(default_factory=list)
    plugins: list[str] = Field(default_factory=list)
    cql_port: int = Field(9042, ge=1, le=65535)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        parse_version(value)
        return value

    @model_validator(mode="after")
    def _unique_pool_names(self) -> ClusterSpec:
        seen: set[str] = set()
        for pool in self.node_pools:
            if pool.name in seen:
                raise ValueError(f"Duplicate node pool name: {pool.name}")
            seen.add(pool.name)
        return self

    def version_for(self, pool: NodePool) -> str:
        """The version a node pool should be running."""
        return pool.version or self.version

    def get_node_pool(self, name: str) -> NodePool | None:
        for pool in self.node_pools:
            if pool.name == name:
                return pool
        return None


# --- Cluster Status ---


class NodePoolStatus(BaseModel):
    """Observed state of one node pool."""

    model_config = _API_FIELDS

    ready_replicas: int = 0
    version: str | None = None


class ClusterStatus(BaseModel):
    """Observed state of a cluster, keyed by node pool name.

    A missing entry means the pool has not been created yet.
    """

    model_config = _API_FIELDS

    node_pools: dict[str, NodePoolStatus] = Field(default_factory=dict)


class Cluster(BaseModel):
    """A managed database cluster (the parent of every derived resource)."""

    kind: ClusterKind
    api_version: str = API_VERSION
    metadata: ObjectMeta
    spec: ClusterSpec
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"


# --- Child Resources ---


class Resource(BaseModel):
    """A generic child resource (service, stateful set, role, pilot, pod...).

    ``spec`` and ``status`` hold the kind-specific bodies in API field
    naming (camelCase), exactly as they are sent to the resource API.
    """

    kind: str
    api_version: str = "v1"
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace
