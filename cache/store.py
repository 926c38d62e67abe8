"""
cache/store.py -- SQLite-backed object cache shared by the ILS client and the API.

The ILS client stores patron profile fields (group, expiry date) here when a
patron logs in; the auth endpoint reads them back in the same request without
a second round trip to the ILS. Entries expire after a configurable TTL
(default 1 hour).

One sqlite3 connection is shared by the request thread pool and the purge
task; every statement and its commit run under a single lock.

Usage:
    cache = ObjectCache()
    cache.set("Alma_User___svc1_GroupCode", "STAFF")
    cache.get("Alma_User___svc1_GroupCode")   # returns the value or None
    cache.purge_expired()                      # call periodically to trim old entries
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Optional, Union

_DEFAULT_DB = Path(__file__).parent / "patronauth_cache.db"
_DEFAULT_TTL = 60 * 60  # 1 hour in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS object_cache (
    cache_key   TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL
);
"""


class ObjectCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM object_cache WHERE cache_key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        if time.time() - cached_at > self.ttl:
            self._delete(key)
            return None
        return json.loads(data)

    def set(self, key: str, value: Any) -> None:
        """Store value for key, replacing any existing entry. value must be JSON-serialisable."""
        data = json.dumps(value)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO object_cache (cache_key, data, cached_at) VALUES (?, ?, ?)",
                (key, data, time.time()),
            )
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        with self._lock:
            cursor = self._conn.execute("DELETE FROM object_cache WHERE cached_at < ?", (cutoff,))
            self._conn.commit()
        return cursor.rowcount

    def _delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM object_cache WHERE cache_key = ?", (key,))
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
