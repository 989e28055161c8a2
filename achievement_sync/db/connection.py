"""PostgreSQL connection pool shared by the record store and the authoritative sources"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from achievement_sync.config import DATABASE_URL

logger = logging.getLogger(__name__)


class Database:
    """Owns one AsyncConnectionPool; connections hand back rows as dicts"""

    def __init__(self, connection_string: str = DATABASE_URL, min_size: int = 2, max_size: int = 10):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    async def init_pool(self) -> None:
        if self._pool is not None:
            return
        pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        await pool.open()
        self._pool = pool
        logger.info(f"Database pool open (min={self.min_size}, max={self.max_size})")

    async def close_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a pooled connection for the duration of the block"""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized; call init_pool() first")
        async with self._pool.connection() as conn:
            yield conn

    async def ping(self) -> bool:
        """True when the database answers SELECT 1"""
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False
        return True
