"""
Local key/value storage.

Two scopes back the durability tiers of the persistence gateway:
- MemoryStorage: session-scoped, gone when the process exits
- SqliteStorage: long-lived, survives restarts (default ~/.helix/local_storage.db)

Values are JSON strings.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger


class KeyValueStorage(ABC):
    """Minimal string key/value store."""

    @abstractmethod
    def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    def items_with_prefix(self, prefix: str) -> list[tuple[str, str]]:
        """All (key, value) pairs whose key starts with prefix, in key order."""
        items = []
        for key in sorted(self.keys()):
            if key.startswith(prefix):
                value = self.get_item(key)
                if value is not None:
                    items.append((key, value))
        return items

    def close(self) -> None:
        pass


class MemoryStorage(KeyValueStorage):
    """Session-scoped storage."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class SqliteStorage(KeyValueStorage):
    """Long-lived storage in a local SQLite file."""

    def __init__(self, db_path: Path | str):
        """
        Initialize the store.

        Args:
            db_path: Database file (":memory:" for a throwaway store)
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug("Local storage initialized at {}", self.db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS local_storage (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.conn.commit()

    def get_item(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM local_storage WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_item(self, key: str, value: str) -> None:
        self.conn.execute(
            """
            INSERT INTO local_storage (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value),
        )
        self.conn.commit()

    def remove_item(self, key: str) -> None:
        self.conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
        self.conn.commit()

    def keys(self) -> list[str]:
        return [row["key"] for row in self.conn.execute("SELECT key FROM local_storage")]

    def items_with_prefix(self, prefix: str) -> list[tuple[str, str]]:
        rows = self.conn.execute(
            "SELECT key, value FROM local_storage WHERE substr(key, 1, length(?)) = ? ORDER BY key",
            (prefix, prefix),
        )
        return [(row["key"], row["value"]) for row in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
