"""Lazily opened aiosqlite connection shared by the job store."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import aiosqlite

from apirunner.logger import get_logger

logger = get_logger(__name__)


class SQLiteConnection:
    """
    One aiosqlite connection, opened on first use.

    WAL journaling lets ``apirunner jobs`` read the history file while a
    running job is still writing to it.
    """

    PRAGMAS = [
        "PRAGMA journal_mode = WAL",
        "PRAGMA foreign_keys = ON",
        "PRAGMA synchronous = NORMAL",
        "PRAGMA temp_store = MEMORY",
    ]

    def __init__(self, db_path: str, **kwargs):
        """
        Args:
            db_path: Location of the job database; parent directories are created
            **kwargs: Passed through to ``aiosqlite.connect``
        """
        self.db_path = Path(db_path)
        self.connect_kwargs = kwargs
        self._conn: Optional[aiosqlite.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path, **self.connect_kwargs)
            self._conn.row_factory = aiosqlite.Row
            for pragma in self.PRAGMAS:
                await self._conn.execute(pragma)
            logger.debug(f"Opened job database {self.db_path}")
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug(f"Closed job database {self.db_path}")

    async def execute(self, query: str, parameters: tuple = ()) -> aiosqlite.Cursor:
        conn = await self.connect()
        return await conn.execute(query, parameters)

    async def executescript(self, script: str) -> None:
        conn = await self.connect()
        await conn.executescript(script)

    @asynccontextmanager
    async def transaction(self):
        """
        Yield the connection and commit when the block exits cleanly.

        Any exception rolls the block back and is re-raised.
        """
        conn = await self.connect()
        try:
            yield conn
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
