"""SQLiteStore: key-value storage backend using stdlib sqlite3."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from ..core.kv_store import KeyValueStore
from ..types import StorageError

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteStore(KeyValueStore):
    """Single-table store; every write commits immediately."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def get_item(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove '{key}': {e}") from e

    def last_modified(self, key: str) -> datetime | None:
        row = self._conn.execute("SELECT updated_at FROM kv WHERE key = ?", (key,)).fetchone()
        return datetime.fromisoformat(row[0]) if row else None

    def keys(self) -> list[str]:
        rows = self._conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [r[0] for r in rows]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM kv")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
