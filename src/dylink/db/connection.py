"""SQLite connection for the persisted record store.

The schema is versioned with ``PRAGMA user_version``. Each entry in
``MIGRATIONS`` upgrades the file by one version.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)

MIGRATIONS: list[str] = [
    # 1: typed key/value records
    """
    CREATE TABLE IF NOT EXISTS records (
        key TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
    """,
]


class Database:
    """One aiosqlite connection per record file."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(f"Record store {self.db_path} is not connected")
        return self._connection

    async def connect(self) -> None:
        """Open the file, creating it and its directory if needed, and migrate."""
        if self._connection is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("PRAGMA journal_mode = WAL")
        await self._connection.execute("PRAGMA busy_timeout = 5000")
        await self._migrate()
        logger.info(f"Connected to record store: {self.db_path}")

    async def disconnect(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("Record store closed")

    async def schema_version(self) -> int:
        row = await self.fetchone("PRAGMA user_version")
        return int(row[0]) if row else 0

    async def _migrate(self) -> None:
        current = await self.schema_version()
        for version, script in enumerate(MIGRATIONS[current:], start=current + 1):
            logger.info(f"Upgrading record store to schema version {version}")
            await self.connection.executescript(script)
            # PRAGMA does not accept bound parameters
            await self.connection.execute(f"PRAGMA user_version = {version}")
            await self.connection.commit()

    async def execute(self, query: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        return await self.connection.execute(query, params)

    async def fetchone(self, query: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        cursor = await self.execute(query, params)
        return await cursor.fetchone()

    async def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self.execute(query, params)
        return list(await cursor.fetchall())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back if the block raises."""
        try:
            yield self.connection
        except BaseException:
            await self.connection.rollback()
            raise
        await self.connection.commit()
