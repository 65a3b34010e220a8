"""SQLite storage adapter with a byte quota."""

import asyncio
import os
import sqlite3
import time
from typing import List, Optional

import aiosqlite

from economica.core.errors import StorageBackendError, StorageQuotaExceededError
from economica.core.logging import get_logger
from economica.services.cache.backends.base import AdapterStats, StorageAdapter

logger = get_logger(__name__)


class SQLiteStorageAdapter(StorageAdapter):
    """Persistent key-value store backed by a single SQLite table.

    Each write checks the total stored bytes against ``quota_bytes`` and
    raises ``StorageQuotaExceededError`` when the value would not fit.
    """

    def __init__(self, db_path: str, quota_bytes: Optional[int] = None, name: str = "sqlite"):
        self.name = name
        self.db_path = db_path
        self._quota_bytes = quota_bytes
        self._stats = AdapterStats()
        self._initialized = False
        # Quota check and insert must not interleave
        self._write_lock = asyncio.Lock()

    @property
    def stats(self) -> AdapterStats:
        """Get adapter statistics."""
        return self._stats

    async def connect(self) -> None:
        """Ensure the database file and table exist."""
        if self._initialized:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cache_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        size INTEGER NOT NULL,
                        updated_at REAL NOT NULL
                    )
                    """
                )
                await db.commit()
        except sqlite3.Error as e:
            raise StorageBackendError(f"Failed to open {self.db_path}: {e}", self.name, "connect") from e

        self._initialized = True
        logger.info("SQLite cache store initialized at %s", self.db_path)

    async def get(self, key: str) -> Optional[str]:
        await self.connect()
        self._stats.record_read()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT value FROM cache_entries WHERE key = ?", (key,))
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            self._stats.record_error()
            raise StorageBackendError(f"SQLite GET error for key {key}: {e}", self.name, "get") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self.connect()
        size = len(value.encode("utf-8"))

        async with self._write_lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    if self._quota_bytes is not None:
                        cursor = await db.execute(
                            "SELECT COALESCE(SUM(size), 0) FROM cache_entries WHERE key != ?",
                            (key,),
                        )
                        (used,) = await cursor.fetchone()
                        available = self._quota_bytes - used
                        if size > available:
                            self._stats.record_quota_rejection()
                            raise StorageQuotaExceededError(self.name, size, max(available, 0))

                    await db.execute(
                        """
                        INSERT INTO cache_entries (key, value, size, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value=excluded.value,
                            size=excluded.size,
                            updated_at=excluded.updated_at
                        """,
                        (key, value, size, time.time()),
                    )
                    await db.commit()
            except sqlite3.Error as e:
                self._stats.record_error()
                raise StorageBackendError(f"SQLite SET error for key {key}: {e}", self.name, "set") from e

        self._stats.record_write()

    async def remove(self, key: str) -> bool:
        await self.connect()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                await db.commit()
                removed = cursor.rowcount > 0
        except sqlite3.Error as e:
            self._stats.record_error()
            raise StorageBackendError(f"SQLite DELETE error for key {key}: {e}", self.name, "remove") from e

        if removed:
            self._stats.record_removal()
        return removed

    async def clear(self) -> None:
        await self.connect()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM cache_entries")
                await db.commit()
        except sqlite3.Error as e:
            self._stats.record_error()
            raise StorageBackendError(f"SQLite CLEAR error: {e}", self.name, "clear") from e

    async def keys(self) -> List[str]:
        await self.connect()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT key FROM cache_entries")
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            self._stats.record_error()
            raise StorageBackendError(f"SQLite KEYS error: {e}", self.name, "keys") from e
        return [row[0] for row in rows]

    async def size(self) -> int:
        await self.connect()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT COALESCE(SUM(size), 0) FROM cache_entries")
                (total,) = await cursor.fetchone()
        except sqlite3.Error as e:
            self._stats.record_error()
            raise StorageBackendError(f"SQLite SIZE error: {e}", self.name, "size") from e
        return int(total)
