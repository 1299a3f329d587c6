# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SQLite-backed cache store: persistent critical CSS/JS across CLI runs.

Single long-lived ``sqlite3`` connection, WAL journal mode, schema versioned
via ``PRAGMA user_version``. Expiry uses wall-clock time so entries survive
process restarts.

Dependencies: cache.py (CacheStoreProtocol shape).
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable
from contextlib import suppress
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

DEFAULT_DB_PATH = "~/.critical_assets/cache.db"


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_CREATE_ENTRIES = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL
)
"""

_CREATE_ENTRY_TAGS = """
CREATE TABLE IF NOT EXISTS cache_entry_tags (
    key TEXT NOT NULL REFERENCES cache_entries(key) ON DELETE CASCADE,
    tag TEXT NOT NULL,
    PRIMARY KEY (key, tag)
)
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_cache_entry_tags_tag ON cache_entry_tags(tag)",
]


# ---------------------------------------------------------------------------
# SqliteCacheStore
# ---------------------------------------------------------------------------


class SqliteCacheStore:
    """SQLite implementation of ``CacheStoreProtocol``.

    Use ``open()`` (or the context manager) rather than passing a raw connection.
    """

    def __init__(self, db: sqlite3.Connection) -> None:
        self._db: sqlite3.Connection | None = db

    @classmethod
    def open(cls, db_path: str | Path = DEFAULT_DB_PATH) -> SqliteCacheStore:
        """Open (or create) the database and initialise the schema.

        Resolves ``~`` and creates parent directories. ``":memory:"`` is
        passed through unchanged.

        Raises:
            ValueError: If the existing database has a newer schema version.
        """
        if str(db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)

        db = sqlite3.connect(target)
        try:
            db.execute("PRAGMA journal_mode = WAL")
            db.execute("PRAGMA foreign_keys = ON")

            row = db.execute("PRAGMA user_version").fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise ValueError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )

            if current_version < _SCHEMA_VERSION:
                with db:
                    db.execute(_CREATE_ENTRIES)
                    db.execute(_CREATE_ENTRY_TAGS)
                    for idx_sql in _CREATE_INDEXES:
                        db.execute(idx_sql)
                    db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
        except BaseException:
            db.close()
            raise

        logger.debug("Cache database opened: %s", target)
        return cls(db)

    @property
    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("SqliteCacheStore is closed")
        return self._db

    # ── CacheStoreProtocol methods ────────────────────────────────

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> str | None:
        """Return the value for *key*, or ``None`` if missing or expired."""
        row = self._conn.execute(
            "SELECT value, expires_at FROM cache_entries WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and time.time() >= expires_at:
            with self._conn:
                self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            logger.debug("Cache entry expired: %s", key)
            return None
        return value

    def set(self, key: str, value: str, tags: Iterable[str] = (), lifetime: int = 0) -> None:
        """Store or replace *key*; its tag set is replaced too."""
        now = time.time()
        expires_at = now + lifetime if lifetime > 0 else None
        with self._conn as db:
            db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            db.execute(
                "INSERT INTO cache_entries (key, value, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (key, value, now, expires_at),
            )
            db.executemany(
                "INSERT OR IGNORE INTO cache_entry_tags (key, tag) VALUES (?, ?)",
                [(key, tag) for tag in tags],
            )

    def flush_by_tag(self, tag: str) -> int:
        """Delete every entry carrying *tag*; return how many were removed."""
        with self._conn as db:
            cursor = db.execute(
                "DELETE FROM cache_entries WHERE key IN (SELECT key FROM cache_entry_tags WHERE tag = ?)",
                (tag,),
            )
        logger.debug("Cache flush: tag=%s removed=%d", tag, cursor.rowcount)
        return cursor.rowcount

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
        return row[0] if row else 0

    def close(self) -> None:
        """Close the database connection. Idempotent."""
        db, self._db = self._db, None
        if db is not None:
            with suppress(Exception):
                db.close()

    def __enter__(self) -> SqliteCacheStore:
        return self

    def __exit__(self, *args) -> None:
        self.close()
