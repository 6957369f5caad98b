"""Canonical hashing helpers for cache keys, provenance and receipt seals.

Every hash in ontoforge is a pure function of content bytes.  File paths,
timestamps and execution ids never enter a content hash, so identical
inputs always produce identical digests.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Path) -> str:
    """SHA-256 of a file's bytes."""
    return sha256_hex(Path(path).read_bytes())


def compute_cache_key(ontology_bytes: bytes, query_bytes: bytes) -> str:
    """Cache key for a query result: SHA-256(ontology ‖ query).

    The ontology part is length-prefixed so that moving bytes across the
    boundary between the two inputs always changes the key.
    """
    hasher = hashlib.sha256()
    hasher.update(len(ontology_bytes).to_bytes(8, "big"))
    hasher.update(ontology_bytes)
    hasher.update(query_bytes)
    return hasher.hexdigest()


def compute_seal(record: dict[str, Any], *, exclude: tuple[str, ...] = ("seal",)) -> str:
    """SHA-256 of a record's canonical JSON, excluding the seal field itself.

    This is what makes a persisted receipt tamper-evident.
    """
    d = {k: v for k, v in record.items() if k not in exclude}
    return sha256_hex(canonical_json_bytes(d))
