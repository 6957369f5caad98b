"""Content-addressed, write-once query result cache.

Storage layout: {cache_dir}/{key}.json
The key is SHA-256(ontology bytes ‖ query bytes), so two rules whose
ontology and query bytes are identical share one entry wherever their files
live.  There is no eviction and no delete method: an entry's value is fully
determined by its key.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from ontoforge.core.errors import OntoforgeError
from ontoforge.core.hasher import canonical_json_bytes, compute_cache_key
from ontoforge.models.artifacts import CacheEntry, RowSet

logger = logging.getLogger(__name__)


class CacheIntegrityError(OntoforgeError):
    """Raised when a stored entry does not belong to the key it is filed under."""


class QueryResultCache:
    """SHA-256 keyed, write-once query result store.

    Safe to share across worker threads: reads never see a partially
    written entry (entries are written to a temp file and renamed into
    place), and concurrent writers of the same key write identical bytes.

    Parameters
    ----------
    cache_dir:
        Directory holding ``<key>.json`` entries.  Created lazily on the
        first write.
    """

    def __init__(self, cache_dir: Path) -> None:
        self._dir = Path(cache_dir)

    @staticmethod
    def compute_key(ontology_bytes: bytes, query_bytes: bytes) -> str:
        """Cache key for a query over an ontology."""
        return compute_cache_key(ontology_bytes, query_bytes)

    def _entry_path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str) -> RowSet | None:
        """Return the cached rows for *key*, or None on a miss.

        An unreadable or corrupt entry counts as a miss; the next ``set``
        rewrites it.
        """
        path = self._entry_path(key)
        try:
            entry = CacheEntry.model_validate(json.loads(path.read_bytes()))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache entry %s: %s", path.name, exc)
            return None

        if entry.key != key:
            raise CacheIntegrityError(
                f"Cache entry {path.name} holds key {entry.key!r}"
            )
        return entry.rows

    def set(self, key: str, rows: RowSet) -> CacheEntry:
        """Store *rows* under *key* unless an entry already exists."""
        entry = CacheEntry(key=key, rows=rows)
        path = self._entry_path(key)
        if path.exists() and self._is_readable(path):
            return entry

        self._dir.mkdir(parents=True, exist_ok=True)
        data = canonical_json_bytes(entry.model_dump(mode="json"))
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key[:16]}-", suffix=".tmp", dir=self._dir)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Cached %d rows under %s", len(rows), key[:12])
        return entry

    @staticmethod
    def _is_readable(path: Path) -> bool:
        try:
            CacheEntry.model_validate(json.loads(path.read_bytes()))
        except (OSError, ValueError):
            return False
        return True
