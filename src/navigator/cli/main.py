"""navigator CLI: command-line interface for the Navigator controller.

Commands:
    run         Run the cluster controllers until interrupted
    plan        Show the next action the planner would take for a cluster
    validate    Validate cluster manifests
    names       Show the resource names and drift hashes derived from a cluster
"""

from __future__ import annotations

import dataclasses
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError

from navigator import __version__
from navigator.cluster.actions import describe
from navigator.cluster.hashing import compute_node_pool_hash
from navigator.cluster.planner import next_action
from navigator.cluster.util import (
    node_pool_resource_name,
    nodes_service_name,
    pilot_role_name,
    seeds_service_name,
    service_account_name,
)
from navigator.config import ConfigError, ControllerConfig, load_config
from navigator.manager import Manager, build_store
from navigator.models import Cluster, ClusterKind
from navigator.store.base import StoreObject
from navigator.store.kube import KIND_MAP, from_api
from navigator.store.memory import InMemoryStore

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ManifestError(Exception):
    """Raised when a manifest file cannot be parsed into store objects."""


def _load_manifests(path: str) -> list[StoreObject]:
    """Parse every YAML document in *path* into a store object."""
    try:
        docs = [d for d in yaml.safe_load_all(Path(path).read_text(encoding="utf-8")) if d]
    except (OSError, yaml.YAMLError) as exc:
        raise ManifestError(f"{path}: {exc}") from exc

    objects: list[StoreObject] = []
    for i, doc in enumerate(docs):
        if not isinstance(doc, dict):
            raise ManifestError(f"{path}: document {i} is not a mapping")
        kind = doc.get("kind")
        if kind not in KIND_MAP:
            raise ManifestError(f"{path}: document {i} has unsupported kind {kind!r}")
        try:
            objects.append(from_api(kind, doc))
        except (KeyError, ValueError, ValidationError) as exc:
            raise ManifestError(f"{path}: document {i} ({kind}): {exc}") from exc
    return objects


def _load_clusters(path: str) -> list[Cluster]:
    clusters = [o for o in _load_manifests(path) if isinstance(o, Cluster)]
    if not clusters:
        raise ManifestError(f"{path}: no {' or '.join(ClusterKind)} found")
    return clusters


def _resolve_cfg(path: str | None) -> ControllerConfig:
    try:
        return load_config(path)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Navigator: reconciliation controller for clustered databases."""


# --- run command ---


@cli.command()
@click.option("--config", "config_path", default=None, help="Path to navigator.yaml")
@click.option("--workers", type=int, default=None, help="Worker threads per controller")
@click.option("--namespace", default=None, help="Only manage clusters in this namespace")
@click.option(
    "--in-memory", is_flag=True,
    help="Use an in-memory store instead of a Kubernetes API server",
)
@click.option(
    "--manifest", "-f", "manifests", multiple=True,
    help="Seed the in-memory store from this YAML file (repeatable)",
)
def run(
    config_path: str | None,
    workers: int | None,
    namespace: str | None,
    in_memory: bool,
    manifests: tuple[str, ...],
) -> None:
    """Run the cluster controllers until interrupted."""
    cfg = _resolve_cfg(config_path)
    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT)
    log = logging.getLogger("navigator.cli")

    if manifests and not in_memory:
        raise click.UsageError("--manifest requires --in-memory")

    overrides: dict[str, Any] = {}
    if workers is not None:
        overrides["workers"] = workers
    if namespace is not None:
        overrides["namespace"] = namespace
    if overrides:
        cfg = dataclasses.replace(cfg, **overrides)

    store = build_store(cfg, in_memory=in_memory)
    if isinstance(store, InMemoryStore):
        for path in manifests:
            try:
                for obj in _load_manifests(path):
                    store.add(obj)
            except ManifestError as exc:
                raise click.ClickException(str(exc)) from exc

    try:
        manager = Manager.from_config(cfg, store=store)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    stop = threading.Event()

    def _stop(signum: int, _frame: Any) -> None:
        log.info("Received signal %d, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    log.info(
        "Running %s with %d worker(s) each",
        ", ".join(c.name for c in manager.controllers), cfg.workers,
    )
    manager.run(stop)
    if manager.errors:
        sys.exit(1)


# --- plan command ---


@cli.command()
@click.argument("cluster_file")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def plan(cluster_file: str, json_output: bool) -> None:
    """Show the next action for each cluster in CLUSTER_FILE.

    The cluster's ``status`` section is taken as the observed state.
    """
    try:
        clusters = _load_clusters(cluster_file)
    except ManifestError as exc:
        raise click.ClickException(str(exc)) from exc

    results = []
    for cluster in clusters:
        action = next_action(cluster)
        results.append({
            "cluster": cluster.key,
            "action": action.name if action is not None else None,
            "node_pool": action.node_pool.name if action is not None else None,
            "description": describe(action) if action is not None else "No action",
        })

    if json_output:
        click.echo(json.dumps(results, indent=2))
        return
    for r in results:
        if r["action"] is None:
            click.echo(f"{r['cluster']}: " + click.style("no action", fg="green"))
        else:
            click.echo(
                f"{r['cluster']}: " + click.style(r["action"], fg="yellow")
                + f"  {r['description']}"
            )


# --- validate command ---


@cli.command()
@click.argument("files", nargs=-1, required=True)
def validate(files: tuple[str, ...]) -> None:
    """Validate cluster manifests."""
    errors: list[str] = []
    ok_count = 0

    for path in files:
        try:
            objects = _load_manifests(path)
        except ManifestError as e:
            errors.append(str(e))
            click.echo(click.style("FAIL", fg="red") + f"  {e}")
            continue
        ok_count += 1
        click.echo(
            click.style("OK", fg="green")
            + f"  {path}: {len(objects)} object(s) loaded"
        )

    if errors:
        click.echo(f"\n{len(errors)} error(s) found.")
        sys.exit(1)
    click.echo(f"\nAll {ok_count} file(s) valid.")


# --- names command ---


@cli.command()
@click.argument("cluster_file")
def names(cluster_file: str) -> None:
    """Show the resource names derived from each cluster in CLUSTER_FILE."""
    try:
        clusters = _load_clusters(cluster_file)
    except ManifestError as exc:
        raise click.ClickException(str(exc)) from exc

    for cluster in clusters:
        click.echo(click.style(f"{cluster.kind} {cluster.key}", bold=True))
        click.echo(f"  seed provider service: {seeds_service_name(cluster)}")
        click.echo(f"  nodes service:         {nodes_service_name(cluster)}")
        click.echo(f"  service account:       {service_account_name(cluster)}")
        click.echo(f"  pilot role:            {pilot_role_name(cluster)}")
        for pool in cluster.spec.node_pools:
            click.echo(
                f"  node pool {pool.name}: {node_pool_resource_name(cluster, pool.name)}"
                f"  hash={compute_node_pool_hash(cluster, pool)}"
            )


if __name__ == "__main__":
    cli()
