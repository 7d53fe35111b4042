"""Config file loading and auto-discovery for Navigator.

Searches for ``navigator.yaml`` in the current directory and parent
directories, parses it, and resolves a relative ``kubeconfig`` against the
config file's location.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from navigator.workqueue.ratelimit import RateLimitConfig

CONFIG_FILENAME = "navigator.yaml"

DEFAULT_WORKERS = 2
DEFAULT_RESYNC_SECONDS = 30.0
DEFAULT_CACHE_SYNC_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(Exception):
    """Raised when the configuration names something that cannot be built."""


@dataclass(frozen=True)
class ControllerConfig:
    """Parsed ``navigator.yaml``.

    ``namespace`` limits the controllers to one namespace (empty: all).
    ``workers`` is the worker thread count of each controller.
    ``resync_seconds`` is how often every known cluster is re-queued, and
    ``cache_sync_timeout`` how long a controller waits for its watches
    before giving up. ``controllers`` names the cluster kinds to run
    (None: every registered kind). ``kubeconfig``, ``context`` and
    ``in_cluster`` select API credentials; ``rate_limit`` tunes the retry
    backoff of failed syncs.
    """

    config_path: Path | None = None
    namespace: str = ""
    workers: int = DEFAULT_WORKERS
    resync_seconds: float = DEFAULT_RESYNC_SECONDS
    cache_sync_timeout: float = DEFAULT_CACHE_SYNC_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    controllers: tuple[str, ...] | None = None
    kubeconfig: str | None = None
    context: str | None = None
    in_cluster: bool = False
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


def find_config(start: Path | None = None) -> Path | None:
    """Return the nearest ``navigator.yaml`` at or above *start* (default: cwd).

    Directories named ``navigator.yaml`` are skipped.
    """
    origin = (start or Path.cwd()).resolve()
    for directory in (origin, *origin.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> ControllerConfig:
    """Load the controller settings.

    An explicit *path* must exist. Without one the nearest ``navigator.yaml``
    is used when *auto_discover* is set; if there is none every setting
    keeps its default (all namespaces, all registered cluster kinds,
    kubeconfig from its default location).

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a mapping or a setting is invalid.
    """
    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return _parse_config(config_path)

    discovered = find_config() if auto_discover else None
    if discovered is None:
        return ControllerConfig()
    return _parse_config(discovered)


def _parse_config(config_path: Path) -> ControllerConfig:
    """Read and parse a YAML config file."""
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)

    workers = int(data.get("workers", DEFAULT_WORKERS))
    if workers < 1:
        msg = f"workers must be >= 1 in {config_path}, got {workers}"
        raise ValueError(msg)

    controllers = data.get("controllers")
    if controllers is not None:
        if not isinstance(controllers, list):
            msg = f"'controllers' must be a list in {config_path}"
            raise ValueError(msg)
        controllers = tuple(str(c) for c in controllers)

    try:
        rate_limit = RateLimitConfig(**(data.get("rate_limit") or {}))
    except ValidationError as exc:
        msg = f"Invalid rate_limit in {config_path}: {exc}"
        raise ValueError(msg) from exc

    kubeconfig = data.get("kubeconfig")
    if kubeconfig is not None:
        kubeconfig = str((config_path.parent / Path(kubeconfig).expanduser()).resolve())

    return ControllerConfig(
        config_path=config_path,
        namespace=data.get("namespace", "") or "",
        workers=workers,
        resync_seconds=float(data.get("resync_seconds", DEFAULT_RESYNC_SECONDS)),
        cache_sync_timeout=float(data.get("cache_sync_timeout", DEFAULT_CACHE_SYNC_TIMEOUT)),
        log_level=str(data.get("log_level", DEFAULT_LOG_LEVEL)).upper(),
        controllers=controllers,
        kubeconfig=kubeconfig,
        context=data.get("context"),
        in_cluster=bool(data.get("in_cluster", False)),
        rate_limit=rate_limit,
    )
