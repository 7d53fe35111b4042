"""Navigator: a reconciliation controller for clustered databases."""

__version__ = "0.1.0"

from navigator.cluster.actions import ActionError, CreateNodePool, ScaleOut, UpdateVersion
from navigator.cluster.control import ClusterControl, new_cluster_control
from navigator.cluster.controller import ClusterController
from navigator.cluster.planner import next_action
from navigator.cluster.util import ForeignOwnershipError
from navigator.config import ConfigError, ControllerConfig, find_config, load_config
from navigator.controller.base import CacheSyncError, Controller
from navigator.events import EventRecorder, EventType, FakeRecorder, LoggingRecorder, StoreRecorder
from navigator.manager import Manager, default_registry
from navigator.models import (
    Cluster,
    ClusterKind,
    ClusterSpec,
    ClusterStatus,
    ImageSpec,
    NodePool,
    NodePoolStatus,
    ObjectMeta,
    Resource,
)
from navigator.pilot.agent import PilotAgent
from navigator.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceStore,
    StoreError,
)
from navigator.store.memory import InMemoryStore
from navigator.workqueue.queue import RateLimitingQueue
from navigator.workqueue.ratelimit import ItemExponentialFailureRateLimiter, RateLimitConfig

__all__ = [
    "ActionError",
    "AlreadyExistsError",
    "CacheSyncError",
    "Cluster",
    "ClusterControl",
    "ClusterController",
    "ClusterKind",
    "ClusterSpec",
    "ClusterStatus",
    "ConfigError",
    "ConflictError",
    "Controller",
    "ControllerConfig",
    "CreateNodePool",
    "EventRecorder",
    "EventType",
    "FakeRecorder",
    "find_config",
    "ForeignOwnershipError",
    "ImageSpec",
    "InMemoryStore",
    "ItemExponentialFailureRateLimiter",
    "load_config",
    "LoggingRecorder",
    "Manager",
    "default_registry",
    "new_cluster_control",
    "next_action",
    "NodePool",
    "NodePoolStatus",
    "NotFoundError",
    "ObjectMeta",
    "PilotAgent",
    "RateLimitConfig",
    "RateLimitingQueue",
    "Resource",
    "ResourceStore",
    "ScaleOut",
    "StoreError",
    "StoreRecorder",
    "UpdateVersion",
    "__version__",
]
