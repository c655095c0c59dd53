"""
Async SQLite wrapper used by the snapshot index.

Thin layer over aiosqlite: one autocommit connection in WAL mode with
statement execution serialized by a lock.
"""

import aiosqlite
import sqlite3
from pathlib import Path
from typing import Optional, List
import asyncio

from ..utils.logging import get_logger
from ..utils.errors import StorageUnavailableError

logger = get_logger("workspace-snapshots.storage.database")


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long a statement waits on a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._connection: Optional[aiosqlite.Connection] = None
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open database connection."""
        self._closed = False
        if self._connection is not None:
            return
        try:
            self._connection = await aiosqlite.connect(
                self.db_path,
                isolation_level=None  # Autocommit mode
            )
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        except (sqlite3.Error, OSError) as e:
            self._connection = None
            raise StorageUnavailableError(
                f"Cannot open snapshot index {self.db_path}: {e}",
                cause=e
            ) from e

        logger.debug("database_connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection. Statements fail until connect() is called again."""
        async with self._lock:
            self._closed = True
            if self._connection:
                await self._connection.close()
                self._connection = None
                logger.debug("database_closed", path=str(self.db_path))

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            if self._closed:
                raise StorageUnavailableError(f"Snapshot index {self.db_path} is closed")
            await self.connect()
        return self._connection

    async def execute(self, sql: str, parameters: tuple = ()) -> aiosqlite.Cursor:
        async with self._lock:
            connection = await self._ensure_connection()
            return await connection.execute(sql, parameters)

    async def executescript(self, script: str) -> None:
        """Run several statements, e.g. schema creation."""
        async with self._lock:
            connection = await self._ensure_connection()
            await connection.executescript(script)

    async def executemany(self, sql: str, parameters: List[tuple]) -> aiosqlite.Cursor:
        async with self._lock:
            connection = await self._ensure_connection()
            return await connection.executemany(sql, parameters)

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[tuple]:
        """Execute query and fetch one row, or None."""
        async with self._lock:
            connection = await self._ensure_connection()
            async with connection.execute(sql, parameters) as cursor:
                return await cursor.fetchone()

    async def fetchall(self, sql: str, parameters: tuple = ()) -> List[tuple]:
        """Execute query and fetch all rows."""
        async with self._lock:
            connection = await self._ensure_connection()
            async with connection.execute(sql, parameters) as cursor:
                return list(await cursor.fetchall())

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
