"""Byte-keyed storage engines behind the message store."""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key BLOB PRIMARY KEY,
    value BLOB NOT NULL
) WITHOUT ROWID;
"""


class StoreError(Exception):
    """Storage engine failure or corrupt stored record."""


class KeyValueStore(ABC):
    """Abstract get/set store keyed by bytes."""

    @abstractmethod
    def get(self, key: bytes) -> bytes | None:
        """Get the value for a key, or None if absent."""
        pass

    @abstractmethod
    def set_many(self, items: list[tuple[bytes, bytes]]) -> None:
        """Write several keys atomically: all of them or none."""
        pass

    def set(self, key: bytes, value: bytes) -> None:
        self.set_many([(key, value)])

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store, used in tests and for throwaway servers."""

    def __init__(self):
        self._data: dict[bytes, bytes] = {}

    def get(self, key: bytes) -> bytes | None:
        return self._data.get(key)

    def set_many(self, items: list[tuple[bytes, bytes]]) -> None:
        self._data.update(items)


class SQLiteKeyValueStore(KeyValueStore):
    """Store persisted in a single SQLite database file."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.executescript(KV_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e

        logger.info(f"SQLiteKeyValueStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: bytes) -> bytes | None:
        conn = self._ensure_connected()
        try:
            with self._conn_lock:
                row = conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Read of {key!r} failed: {e}") from e
        return bytes(row[0]) if row else None

    def set_many(self, items: list[tuple[bytes, bytes]]) -> None:
        conn = self._ensure_connected()
        try:
            with self._conn_lock, conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    items,
                )
        except sqlite3.Error as e:
            raise StoreError(f"Write of {len(items)} keys failed: {e}") from e
