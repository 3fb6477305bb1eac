"""SQLite persistence for the single-host seen-line store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS seen_lines (
    dedup_key BLOB PRIMARY KEY,
    marked_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS seen_lines_marked_at ON seen_lines(marked_at);
"""


def _migrate(conn: sqlite3.Connection) -> None:
    version = conn.execute("PRAGMA user_version").fetchone()[0]
    if version >= SCHEMA_VERSION:
        return
    conn.executescript(_SCHEMA)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")


class SQLiteManager:
    """Hand out one shared connection per database file.

    Connections are opened lazily in autocommit mode, switched to WAL and
    migrated to the current seen-line schema on first use.
    """

    def __init__(self) -> None:
        self._connections: dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        key = path.resolve()
        with self._lock:
            conn = self._connections.get(key)
            if conn is None:
                key.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(key, check_same_thread=False, isolation_level=None)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                _migrate(conn)
                self._connections[key] = conn
            return conn

    def close(self, path: Path) -> None:
        with self._lock:
            conn = self._connections.pop(path.resolve(), None)
        if conn is not None:
            conn.close()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SCHEMA_VERSION", "SQLiteManager"]
