"""
cache/store.py -- SQLite-backed cache for registry lookups and computed posture.

Avoids redundant registry calls by storing JSON values locally with a
per-entry TTL. Shared by the engine and the CLI so both benefit from cached
catalogs, resolutions, and compliance snapshots.

The cache is best-effort: a miss is not an error, and a broken database is
logged and treated as a miss. Writes are idempotent -- re-caching the same
computed value is harmless, so no compare-and-swap is needed.

Usage:
    cache = ComplianceCache()
    data = cache.get("org-compliance:tenant-1")   # returns value or None
    cache.set("org-compliance:tenant-1", data, ttl=300)
    cache.purge_expired()                         # call periodically to trim old entries
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger("posturelens.cache")

_DEFAULT_DB = Path(__file__).parent / "posturelens.db"
_DEFAULT_TTL = 300  # 5 minutes in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


@runtime_checkable
class Cache(Protocol):
    """Key/value store the engine reads through. A miss returns None."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...


class ComplianceCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key if it exists and hasn't expired."""
        try:
            row = self._conn.execute(
                "SELECT data, expires_at FROM kv_cache WHERE key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if row is None:
            return None
        data, expires_at = row
        if time.time() >= expires_at:
            self.delete(key)
            return None
        try:
            value = json.loads(data)
        except ValueError as e:
            logger.warning("Cache entry for %s is not valid JSON, dropping it: %s", key, e)
            self.delete(key)
            return None
        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value for key, replacing any existing entry."""
        effective_ttl = self.ttl if ttl is None else ttl
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_cache (key, data, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), time.time() + effective_ttl),
            )
            self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return
        logger.debug("Cache set: %s (TTL: %ss)", key, effective_ttl)

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        try:
            cursor = self._conn.execute("DELETE FROM kv_cache WHERE expires_at <= ?", (time.time(),))
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("Cache purge failed: %s", e)
            return 0
        return cursor.rowcount

    def delete(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    def close(self) -> None:
        self._conn.close()
