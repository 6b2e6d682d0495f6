"""
Tideflow - Cache persistence (SQLite)

Keeps window-cache entries across restarts. One row per (namespace, key)
holding the JSON payload with its write timestamp and TTL.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .cache import CacheEntry

logger = logging.getLogger("core.cache_store")


# ============================================================================
# DATABASE SCHEMA
# ============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS window_cache (
    namespace TEXT NOT NULL,
    cache_key TEXT NOT NULL,       -- "{station}:{yyyymm}"
    created_at REAL NOT NULL,      -- unix seconds
    ttl REAL NOT NULL,             -- seconds
    payload TEXT NOT NULL,         -- JSON

    PRIMARY KEY (namespace, cache_key)
);

CREATE INDEX IF NOT EXISTS idx_window_cache_created
ON window_cache(namespace, created_at);
"""


class SqliteCacheStore:
    """Persistence backend for TTLCache."""

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        # A private connection is kept for in-memory databases, which vanish on close
        self._memory_conn = sqlite3.connect(":memory:") if path == ":memory:" else None
        with self.get_connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._memory_conn or sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if self._memory_conn is None:
                conn.close()

    def load(self, namespace: str, key: str) -> Optional[CacheEntry]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT created_at, ttl, payload FROM window_cache "
                "WHERE namespace = ? AND cache_key = ?",
                (namespace, key),
            ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError:
            logger.warning(f"[{namespace}] corrupt cache row {key}, ignoring")
            return None
        return CacheEntry.from_dict(key, {
            "createdAt": row["created_at"],
            "ttl": row["ttl"],
            "payload": payload,
        })

    def save(self, namespace: str, entry: CacheEntry):
        with self.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO window_cache "
                "(namespace, cache_key, created_at, ttl, payload) VALUES (?, ?, ?, ?, ?)",
                (namespace, entry.key, entry.created_at, entry.ttl, json.dumps(entry.payload)),
            )

    def delete(self, namespace: str, key: str):
        with self.get_connection() as conn:
            conn.execute(
                "DELETE FROM window_cache WHERE namespace = ? AND cache_key = ?",
                (namespace, key),
            )

    def clear(self, namespace: str):
        with self.get_connection() as conn:
            conn.execute("DELETE FROM window_cache WHERE namespace = ?", (namespace,))

    def purge_expired(self, now: float) -> int:
        """Delete every expired row; returns the number removed."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM window_cache WHERE created_at + ttl <= ?", (now,)
            )
            return cursor.rowcount

    def keys(self, namespace: str) -> List[str]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT cache_key FROM window_cache WHERE namespace = ? ORDER BY created_at",
                (namespace,),
            ).fetchall()
        return [r["cache_key"] for r in rows]
