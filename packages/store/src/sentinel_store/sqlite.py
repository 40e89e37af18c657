"""SQLiteBackend: local file-based substrate for self-hosted runners.

Why SQLite:
- Batteries included: ships with Python, no extra dependencies.
- Each save is a single ``INSERT OR REPLACE`` inside a transaction, so a
  payload is either fully replaced or untouched.
- Works on persistent self-hosted runners where a shared path survives
  between jobs without the Actions cache.

Schema:
  cache_entries: one row per key; ``updated_at`` orders fallback matches.
"""

from __future__ import annotations

import logging
import sqlite3
import time

from sentinel_store.base import BaseBackend
from sentinel_store.models import RestoredEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    data        BLOB NOT NULL,
    updated_at  REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_entries_updated ON cache_entries (updated_at);
"""


class SQLiteBackend(BaseBackend):
    """Stores payloads in a local SQLite database file.

    The database path defaults to ``.code-sentinel.db`` in the working
    directory. Configure via .sentinel.yml: ``cache_path: /path/to/cache.db``.
    """

    def __init__(self, db_path: str = ".code-sentinel.db"):
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def save(self, key: str, data: bytes) -> str:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, data, updated_at) VALUES (?, ?, ?)",
                (key, sqlite3.Binary(data), time.time()),
            )
        return key

    def restore(self, key: str, fallback_keys: list[str] | None = None) -> RestoredEntry | None:
        row = self._conn.execute("SELECT key, data FROM cache_entries WHERE key=?", (key,)).fetchone()
        if row is not None:
            return RestoredEntry(key=row["key"], data=bytes(row["data"]))

        for prefix in fallback_keys or []:
            # substr() instead of LIKE so '_' and '%' in keys are not wildcards.
            row = self._conn.execute(
                "SELECT key, data FROM cache_entries WHERE substr(key, 1, ?) = ? ORDER BY updated_at DESC LIMIT 1",
                (len(prefix), prefix),
            ).fetchone()
            if row is not None:
                logger.debug("Restored %s via fallback prefix %s", row["key"], prefix)
                return RestoredEntry(key=row["key"], data=bytes(row["data"]))
        return None

    def close(self) -> None:
        self._conn.close()
