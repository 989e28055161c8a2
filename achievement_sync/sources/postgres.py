"""Authoritative sources read from the review and chat tables"""
import logging

import psycopg
from psycopg import sql

from achievement_sync.db.connection import Database
from achievement_sync.exceptions import wrap_external_exception

logger = logging.getLogger(__name__)


class PostgresReviewSource:
    """Reads review records from the review service's table"""

    def __init__(self, db: Database, table: str = "reviews"):
        self.db = db
        self.table = table

    async def list_user_reviews(self, user_id: str, limit: int) -> list[dict]:
        query = sql.SQL(
            "SELECT id, created_at FROM {table} WHERE user_id = %s "
            "ORDER BY created_at DESC LIMIT %s"
        ).format(table=sql.Identifier(self.table))

        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (user_id, limit))
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e, operation="list_user_reviews", user_id=user_id, context={"table": self.table}
            ) from e

        return [dict(row) for row in rows]


class PostgresMessageSource:
    """
    Counts messages across several chat tables

    A table that cannot be read (missing, no permission) contributes zero;
    the remaining tables are still counted.
    """

    def __init__(self, db: Database, tables: list[str]):
        self.db = db
        self.tables = list(tables)

    async def count_user_messages(self, user_id: str, limit: int) -> int:
        total = 0
        for table in self.tables:
            try:
                total += await self._count_table(table, user_id, limit)
            except psycopg.Error as e:
                logger.warning(f"Could not read message source '{table}' for user {user_id}: {e}")
        return total

    async def _count_table(self, table: str, user_id: str, limit: int) -> int:
        # Count over a LIMITed subquery so the scan stays bounded
        query = sql.SQL(
            "SELECT COUNT(*) AS total FROM (SELECT 1 FROM {table} WHERE user_id = %s LIMIT %s) AS bounded"
        ).format(table=sql.Identifier(table))

        async with self.db.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, (user_id, limit))
                row = await cur.fetchone()
        return int(row["total"]) if row else 0
