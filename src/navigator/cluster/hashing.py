"""Node pool drift hash.

The hash covers every input that shapes a pool's workload set except the
replica count and version, which the planner's actions own. It is stored
on the set as an annotation; when it no longer matches the cluster's
current spec the set is rewritten.
"""

from __future__ import annotations

import json
from typing import Any

from navigator.models import Cluster, NodePool

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes, seed: int = _FNV32_OFFSET) -> int:
    """32-bit FNV-1a. Pass a previous result as *seed* to continue hashing."""
    h = seed
    for byte in data:
        h ^= byte
        h = (h * _FNV32_PRIME) & 0xFFFFFFFF
    return h


def _hash_input(cluster: Cluster, pool: NodePool) -> dict[str, Any]:
    spec = cluster.spec
    return {
        "plugins": spec.plugins,
        "sysctls": spec.sysctls,
        "image": spec.image.model_dump(exclude={"tag"}),
        "pilot_image": spec.pilot_image.model_dump(),
        "node_pool": pool.model_dump(exclude={"replicas", "version"}),
    }


def compute_node_pool_hash(
    cluster: Cluster, pool: NodePool, collision_count: int | None = None,
) -> str:
    """Return the decimal FNV-1a hash of the pool's shaping inputs.

    The same cluster and pool always give the same string. A collision
    count, when given, is folded in as 8 little-endian bytes (low 32 bits
    populated) so that distinct counts give distinct hashes.
    """
    payload = json.dumps(
        _hash_input(cluster, pool), sort_keys=True, separators=(",", ":"),
    ).encode("utf-8")
    h = fnv1a_32(payload)
    if collision_count is not None:
        counter = (collision_count & 0xFFFFFFFF).to_bytes(4, "little") + bytes(4)
        h = fnv1a_32(counter, seed=h)
    return str(h)
