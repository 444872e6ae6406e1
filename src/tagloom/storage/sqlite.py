"""Durable local adapter: one SQLite row per project holding the tag blob as JSON."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING

from tagloom.errors import AdapterError
from tagloom.model.tag import utcnow
from tagloom.storage.adapter import Blob, CollectionAdapter, normalize_blob

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

# Schema version, incremented on breaking changes
SCHEMA_VERSION = "1"

_SCHEMA_SQL = """\
-- One row per project; tags holds {"library": [...], "custom": [...]}
CREATE TABLE IF NOT EXISTS projects (
    id         TEXT PRIMARY KEY,
    tags       TEXT NOT NULL DEFAULT '{"library": [], "custom": []}',
    updated_at TEXT NOT NULL
);

-- Key-value metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) a SQLite database with WAL journaling.

    Returns a connection with ``sqlite3.Row`` row factory.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist and record the schema version.

    Safe to call multiple times. Raises :class:`AdapterError` (not
    retryable) when the database was written with another schema version.
    """
    conn.executescript(_SCHEMA_SQL)
    stored = get_meta(conn, "schema_version")
    if stored is None:
        set_meta(conn, "schema_version", SCHEMA_VERSION)
    elif stored != SCHEMA_VERSION:
        msg = f"database schema version {stored} is not supported (expected {SCHEMA_VERSION})"
        raise AdapterError(msg, retryable=False)


def get_meta(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    """Read a value from the ``meta`` table, or *default* if the key doesn't exist."""
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return str(row[0])


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or update a key in the ``meta`` table."""
    conn.execute(
        "INSERT INTO meta (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )
    conn.commit()


class SQLiteAdapter(CollectionAdapter):
    """Local store. Calls are synchronous underneath and never suspend mid-write."""

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path,
        project_id: str,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(project_id, clock=clock)
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = open_db(self.db_path)
            except (sqlite3.Error, OSError) as exc:
                msg = f"cannot open database {self.db_path}: {exc}"
                raise AdapterError(msg) from exc
            try:
                create_schema(conn)
            except sqlite3.Error as exc:
                conn.close()
                msg = f"cannot open database {self.db_path}: {exc}"
                raise AdapterError(msg) from exc
            except AdapterError:
                conn.close()
                raise
            self._conn = conn
        return self._conn

    async def _read_blob(self) -> Blob:
        conn = self._connection()
        try:
            row = conn.execute("SELECT tags FROM projects WHERE id = ?", (self.project_id,)).fetchone()
        except sqlite3.Error as exc:
            msg = f"database read failed: {exc}"
            raise AdapterError(msg) from exc
        if row is None:
            return normalize_blob(None)
        try:
            raw = json.loads(row["tags"])
        except json.JSONDecodeError as exc:
            msg = f"stored tag collection for project '{self.project_id}' is not valid JSON"
            raise AdapterError(msg, retryable=False) from exc
        return normalize_blob(raw)

    async def _write_blob(self, blob: Blob) -> None:
        conn = self._connection()
        try:
            conn.execute(
                "INSERT INTO projects (id, tags, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET tags = excluded.tags, "
                "updated_at = excluded.updated_at",
                (self.project_id, json.dumps(blob, ensure_ascii=False), self._now()),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            msg = f"database write failed: {exc}"
            raise AdapterError(msg) from exc

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
