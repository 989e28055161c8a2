"""PostgreSQL record store"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from achievement_sync.db.connection import Database
from achievement_sync.db.store import RecordStore, check_sort_field
from achievement_sync.exceptions import wrap_external_exception
from achievement_sync.models import (
    AchievementProgress,
    CounterKey,
    IntegrityBackup,
    IntegrityFlags,
    ProgressCounters,
    ProgressHistoryEntry,
    UserAchievementSummary,
)
from achievement_sync.utils.datetime_helpers import ensure_utc, to_utc

logger = logging.getLogger(__name__)

COUNTER_COLUMNS = """
    user_id, total_reviews, total_music_minutes, total_app_minutes, total_messages,
    total_points, last_sync_time, data_version, sync_source,
    reviews_from_source, messages_from_source, last_verification,
    reviews_verified, messages_verified, last_integrity_check,
    created_at, updated_at
"""

PROGRESS_COLUMNS = """
    id, user_id, achievement_id, current_progress, target_progress, is_completed,
    completed_at, notification_shown, last_progress_update, verification_count,
    data_source, progress_history, created_at, updated_at
"""


class PostgresRecordStore(RecordStore):
    """RecordStore backed by the tables in migrations/001_achievement_progress.sql"""

    def __init__(self, db: Database):
        self.db = db

    @asynccontextmanager
    async def _cursor(self, operation: str, user_id: Optional[str] = None) -> AsyncIterator[psycopg.AsyncCursor]:
        """Cursor on a pooled connection; psycopg errors come out as DatabaseError"""
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    yield cur
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation, user_id=user_id) from e

    # ==========================================
    # Progress counters
    # ==========================================

    async def get_progress_counters(self, user_id: str) -> Optional[ProgressCounters]:
        async with self._cursor("get_progress_counters", user_id) as cur:
            await cur.execute(
                f"SELECT {COUNTER_COLUMNS} FROM user_progress_counters WHERE user_id = %s",
                (user_id,)
            )
            row = await cur.fetchone()
        return _row_to_counters(row) if row else None

    async def insert_progress_counters(self, counters: ProgressCounters) -> bool:
        async with self._cursor("insert_progress_counters", counters.user_id) as cur:
            await cur.execute(
                f"""
                INSERT INTO user_progress_counters ({COUNTER_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                _counters_params(counters)
            )
            return cur.rowcount > 0

    async def save_progress_counters(self, counters: ProgressCounters) -> None:
        async with self._cursor("save_progress_counters", counters.user_id) as cur:
            await cur.execute(
                f"""
                INSERT INTO user_progress_counters ({COUNTER_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    total_reviews = EXCLUDED.total_reviews,
                    total_music_minutes = EXCLUDED.total_music_minutes,
                    total_app_minutes = EXCLUDED.total_app_minutes,
                    total_messages = EXCLUDED.total_messages,
                    total_points = EXCLUDED.total_points,
                    last_sync_time = EXCLUDED.last_sync_time,
                    data_version = GREATEST(user_progress_counters.data_version, EXCLUDED.data_version),
                    sync_source = EXCLUDED.sync_source,
                    reviews_from_source = EXCLUDED.reviews_from_source,
                    messages_from_source = EXCLUDED.messages_from_source,
                    last_verification = EXCLUDED.last_verification,
                    reviews_verified = EXCLUDED.reviews_verified,
                    messages_verified = EXCLUDED.messages_verified,
                    last_integrity_check = EXCLUDED.last_integrity_check,
                    updated_at = EXCLUDED.updated_at
                """,
                _counters_params(counters)
            )

    async def delete_progress_counters(self, user_id: str) -> bool:
        async with self._cursor("delete_progress_counters", user_id) as cur:
            await cur.execute(
                "DELETE FROM user_progress_counters WHERE user_id = %s",
                (user_id,)
            )
            return cur.rowcount > 0

    async def increment_counter(
        self,
        user_id: str,
        counter_key: CounterKey,
        delta: int,
        updated_at: datetime,
    ) -> bool:
        column = sql.Identifier(counter_key.value)
        query = sql.SQL(
            """
            UPDATE user_progress_counters
            SET {column} = {column} + %s,
                updated_at = %s,
                last_sync_time = %s,
                sync_source = 'auto'
            WHERE user_id = %s
            """
        ).format(column=column)

        async with self._cursor("increment_counter", user_id) as cur:
            await cur.execute(query, (delta, updated_at, updated_at, user_id))
            return cur.rowcount > 0

    async def record_integrity_check(
        self,
        user_id: str,
        checked_at: datetime,
        reviews_from_source: int,
    ) -> bool:
        async with self._cursor("record_integrity_check", user_id) as cur:
            await cur.execute(
                """
                UPDATE user_progress_counters
                SET reviews_verified = TRUE,
                    last_integrity_check = %s,
                    reviews_from_source = %s,
                    last_verification = %s
                WHERE user_id = %s
                """,
                (checked_at, reviews_from_source, checked_at, user_id)
            )
            return cur.rowcount > 0

    # ==========================================
    # Achievement progress
    # ==========================================

    async def get_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> Optional[AchievementProgress]:
        async with self._cursor("get_achievement_progress", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {PROGRESS_COLUMNS}
                FROM user_achievement_progress
                WHERE user_id = %s AND achievement_id = %s
                """,
                (user_id, achievement_id)
            )
            row = await cur.fetchone()
        return _row_to_progress(row) if row else None

    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        history = Jsonb([entry.model_dump(mode="json") for entry in progress.progress_history])
        async with self._cursor("save_achievement_progress", progress.user_id) as cur:
            await cur.execute(
                f"""
                INSERT INTO user_achievement_progress ({PROGRESS_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    current_progress = EXCLUDED.current_progress,
                    target_progress = EXCLUDED.target_progress,
                    is_completed = EXCLUDED.is_completed,
                    completed_at = EXCLUDED.completed_at,
                    notification_shown = EXCLUDED.notification_shown,
                    last_progress_update = EXCLUDED.last_progress_update,
                    verification_count = EXCLUDED.verification_count,
                    data_source = EXCLUDED.data_source,
                    progress_history = EXCLUDED.progress_history,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    progress.id,
                    progress.user_id,
                    progress.achievement_id,
                    progress.current_progress,
                    progress.target_progress,
                    progress.is_completed,
                    progress.completed_at,
                    progress.notification_shown,
                    progress.last_progress_update,
                    progress.verification_count,
                    progress.data_source.value,
                    history,
                    progress.created_at,
                    progress.updated_at,
                )
            )

    async def list_achievement_progress(
        self,
        user_id: str,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[AchievementProgress]:
        query = sql.SQL(
            "SELECT {columns} FROM user_achievement_progress WHERE user_id = %s "
            "ORDER BY {order} {direction} NULLS LAST"
        ).format(
            columns=sql.SQL(PROGRESS_COLUMNS),
            order=sql.Identifier(check_sort_field(order_by)),
            direction=sql.SQL("DESC" if descending else "ASC"),
        )
        async with self._cursor("list_achievement_progress", user_id) as cur:
            await cur.execute(query, (user_id,))
            rows = await cur.fetchall()
        return [_row_to_progress(row) for row in rows]

    async def set_notification_shown(
        self, user_id: str, achievement_id: str, updated_at: datetime
    ) -> bool:
        async with self._cursor("set_notification_shown", user_id) as cur:
            await cur.execute(
                """
                UPDATE user_achievement_progress
                SET notification_shown = TRUE,
                    updated_at = CASE WHEN notification_shown THEN updated_at ELSE %s END
                WHERE user_id = %s AND achievement_id = %s
                """,
                (updated_at, user_id, achievement_id)
            )
            return cur.rowcount > 0

    # ==========================================
    # Summaries
    # ==========================================

    async def get_summary(self, user_id: str) -> Optional[UserAchievementSummary]:
        async with self._cursor("get_summary", user_id) as cur:
            await cur.execute(
                "SELECT payload FROM user_achievement_summary WHERE user_id = %s",
                (user_id,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return UserAchievementSummary.model_validate(row["payload"])

    async def save_summary(self, summary: UserAchievementSummary) -> None:
        async with self._cursor("save_summary", summary.user_id) as cur:
            await cur.execute(
                """
                INSERT INTO user_achievement_summary (user_id, payload, last_updated)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    payload = EXCLUDED.payload,
                    last_updated = EXCLUDED.last_updated
                """,
                (summary.user_id, Jsonb(summary.model_dump(mode="json")), summary.last_updated)
            )


def _counters_params(counters: ProgressCounters) -> tuple:
    return (
        counters.user_id,
        counters.total_reviews,
        counters.total_music_minutes,
        counters.total_app_minutes,
        counters.total_messages,
        counters.total_points,
        counters.last_sync_time,
        counters.data_version,
        counters.sync_source.value,
        counters.integrity_backup.reviews_from_source,
        counters.integrity_backup.messages_from_source,
        counters.integrity_backup.last_verification,
        counters.integrity_flags.reviews_verified,
        counters.integrity_flags.messages_verified,
        counters.integrity_flags.last_integrity_check,
        counters.created_at,
        counters.updated_at,
    )


def _row_to_counters(row: dict) -> ProgressCounters:
    return ProgressCounters(
        user_id=row["user_id"],
        total_reviews=row["total_reviews"],
        total_music_minutes=row["total_music_minutes"],
        total_app_minutes=row["total_app_minutes"],
        total_messages=row["total_messages"],
        total_points=row["total_points"],
        last_sync_time=to_utc(row["last_sync_time"]),
        data_version=row["data_version"],
        sync_source=row["sync_source"],
        integrity_backup=IntegrityBackup(
            reviews_from_source=row["reviews_from_source"],
            messages_from_source=row["messages_from_source"],
            last_verification=to_utc(row["last_verification"]),
        ),
        integrity_flags=IntegrityFlags(
            reviews_verified=row["reviews_verified"],
            messages_verified=row["messages_verified"],
            last_integrity_check=to_utc(row["last_integrity_check"]),
        ),
        created_at=to_utc(row["created_at"]),
        updated_at=to_utc(row["updated_at"]),
    )


def _row_to_progress(row: dict) -> AchievementProgress:
    history = [
        ProgressHistoryEntry(
            value=entry["value"],
            timestamp=to_utc(entry["timestamp"]),
            source=entry["source"],
            trigger=entry.get("trigger", ""),
        )
        for entry in (row["progress_history"] or [])
    ]
    return AchievementProgress(
        id=row["id"],
        user_id=row["user_id"],
        achievement_id=row["achievement_id"],
        current_progress=row["current_progress"],
        target_progress=row["target_progress"],
        is_completed=row["is_completed"],
        completed_at=ensure_utc(row["completed_at"]),
        notification_shown=row["notification_shown"],
        last_progress_update=to_utc(row["last_progress_update"]),
        verification_count=row["verification_count"],
        data_source=row["data_source"],
        progress_history=history,
        created_at=to_utc(row["created_at"]),
        updated_at=to_utc(row["updated_at"]),
    )
