"""Key-value storage backends for the cache layer.

The cache talks to an injected KeyValueStorage. MemoryStorage backs tests and
short-lived processes; SqliteStorage persists entries with aiosqlite using WAL
mode. Both enforce an optional byte quota and raise StorageQuotaExceeded when a
write would exceed it.
"""

import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Self

import aiosqlite

from ammtrail.exceptions import StorageQuotaExceeded
from ammtrail.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    size INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
"""


def entry_size(key: str, value: str) -> int:
    """Bytes an entry occupies, counting both key and UTF-8 value."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStorage(ABC):
    """Abstract string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Raises StorageQuotaExceeded if the write would exceed the quota.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Return all keys starting with prefix."""
        ...

    @abstractmethod
    async def total_size(self) -> int:
        """Bytes used by all entries."""
        ...


class MemoryStorage(KeyValueStorage):
    """Dict-backed storage with an optional byte quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    async def get(self, key: str) -> str | None:
        return self._items.get(key)

    async def set(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(entry_size(k, v) for k, v in self._items.items() if k != key)
            if used + entry_size(key, value) > self._quota_bytes:
                raise StorageQuotaExceeded(
                    f"write of {key} exceeds quota of {self._quota_bytes} bytes"
                )
        self._items[key] = value

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._items if k.startswith(prefix)]

    async def total_size(self) -> int:
        return sum(entry_size(k, v) for k, v in self._items.items())


class SqliteStorage(KeyValueStorage):
    """Async SQLite key-value store.

    Usage:
        # Context manager (recommended)
        async with SqliteStorage("data/cache.db") as storage:
            await storage.set("key", "value")

        # Manual lifecycle
        storage = SqliteStorage("data/cache.db")
        await storage.connect()
        try:
            ...
        finally:
            await storage.close()
    """

    def __init__(
        self,
        db_path: str = "data/cache.db",
        quota_bytes: int | None = None,
    ) -> None:
        self._db_path = db_path
        self._quota_bytes = quota_bytes
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Storage not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the database, configure pragmas, and create the schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.commit()
        await self._ensure_schema_version()

        logger.info("cache_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("cache_db_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            await self.db.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def get(self, key: str) -> str | None:
        cursor = await self.db.execute(
            "SELECT value FROM cache_entries WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def set(self, key: str, value: str) -> None:
        size = entry_size(key, value)
        if self._quota_bytes is not None:
            cursor = await self.db.execute(
                "SELECT COALESCE(SUM(size), 0) FROM cache_entries WHERE key != ?",
                (key,),
            )
            used = (await cursor.fetchone())[0]
            if used + size > self._quota_bytes:
                raise StorageQuotaExceeded(
                    f"write of {key} exceeds quota of {self._quota_bytes} bytes"
                )

        try:
            await self.db.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, size, updated_at) "
                "VALUES (?, ?, ?, strftime('%s', 'now'))",
                (key, value, size),
            )
            await self.db.commit()
        except sqlite3.OperationalError as e:
            # SQLITE_FULL surfaces as "database or disk is full"
            if "full" in str(e).lower():
                raise StorageQuotaExceeded(str(e)) from e
            raise

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await self.db.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        cursor = await self.db.execute(
            "SELECT key FROM cache_entries WHERE substr(key, 1, ?) = ?",
            (len(prefix), prefix),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def total_size(self) -> int:
        cursor = await self.db.execute("SELECT COALESCE(SUM(size), 0) FROM cache_entries")
        return (await cursor.fetchone())[0]

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()
