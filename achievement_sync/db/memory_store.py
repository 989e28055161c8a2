"""
In-memory record store

Process-local RecordStore used by the test suite and by embedded callers
that do not need durability. Records are
copied on the way in and out so callers never share mutable state with
the store.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from achievement_sync.db.store import RecordStore, check_sort_field
from achievement_sync.models import (
    AchievementProgress,
    CounterKey,
    ProgressCounters,
    SyncSource,
    UserAchievementSummary,
)

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """RecordStore kept in dictionaries (not persisted across restarts)"""

    def __init__(self):
        self._counters: Dict[str, ProgressCounters] = {}
        self._progress: Dict[Tuple[str, str], AchievementProgress] = {}
        self._summaries: Dict[str, UserAchievementSummary] = {}
        self._lock = asyncio.Lock()
        self._stats = {
            "reads": 0,
            "writes": 0,
            "increments": 0,
            "deletes": 0,
        }

    async def get_progress_counters(self, user_id: str) -> Optional[ProgressCounters]:
        self._stats["reads"] += 1
        record = self._counters.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def insert_progress_counters(self, counters: ProgressCounters) -> bool:
        async with self._lock:
            if counters.user_id in self._counters:
                return False
            self._counters[counters.user_id] = counters.model_copy(deep=True)
            self._stats["writes"] += 1
            return True

    async def save_progress_counters(self, counters: ProgressCounters) -> None:
        async with self._lock:
            self._counters[counters.user_id] = counters.model_copy(deep=True)
            self._stats["writes"] += 1

    async def delete_progress_counters(self, user_id: str) -> bool:
        async with self._lock:
            self._stats["deletes"] += 1
            return self._counters.pop(user_id, None) is not None

    async def increment_counter(
        self,
        user_id: str,
        counter_key: CounterKey,
        delta: int,
        updated_at: datetime,
    ) -> bool:
        async with self._lock:
            record = self._counters.get(user_id)
            if record is None:
                return False
            setattr(record, counter_key.value, getattr(record, counter_key.value) + delta)
            record.updated_at = updated_at
            record.last_sync_time = updated_at
            record.sync_source = SyncSource.AUTO
            self._stats["increments"] += 1
            return True

    async def record_integrity_check(
        self,
        user_id: str,
        checked_at: datetime,
        reviews_from_source: int,
    ) -> bool:
        async with self._lock:
            record = self._counters.get(user_id)
            if record is None:
                return False
            record.integrity_flags.reviews_verified = True
            record.integrity_flags.last_integrity_check = checked_at
            record.integrity_backup.reviews_from_source = reviews_from_source
            record.integrity_backup.last_verification = checked_at
            self._stats["writes"] += 1
            return True

    async def get_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> Optional[AchievementProgress]:
        self._stats["reads"] += 1
        record = self._progress.get((user_id, achievement_id))
        return record.model_copy(deep=True) if record else None

    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        async with self._lock:
            self._progress[(progress.user_id, progress.achievement_id)] = progress.model_copy(deep=True)
            self._stats["writes"] += 1

    async def list_achievement_progress(
        self,
        user_id: str,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[AchievementProgress]:
        check_sort_field(order_by)
        self._stats["reads"] += 1
        records = [
            record.model_copy(deep=True)
            for (owner, _), record in self._progress.items()
            if owner == user_id
        ]
        # NULLs sort last regardless of direction, as in PostgreSQL's NULLS LAST
        present = [r for r in records if getattr(r, order_by) is not None]
        missing = [r for r in records if getattr(r, order_by) is None]
        present.sort(key=lambda r: getattr(r, order_by), reverse=descending)
        return present + missing

    async def set_notification_shown(
        self, user_id: str, achievement_id: str, updated_at: datetime
    ) -> bool:
        async with self._lock:
            record = self._progress.get((user_id, achievement_id))
            if record is None:
                return False
            if not record.notification_shown:
                record.notification_shown = True
                record.updated_at = updated_at
                self._stats["writes"] += 1
            return True

    async def get_summary(self, user_id: str) -> Optional[UserAchievementSummary]:
        self._stats["reads"] += 1
        summary = self._summaries.get(user_id)
        return summary.model_copy(deep=True) if summary else None

    async def save_summary(self, summary: UserAchievementSummary) -> None:
        async with self._lock:
            self._summaries[summary.user_id] = summary.model_copy(deep=True)
            self._stats["writes"] += 1

    def get_stats(self) -> dict:
        """Operation counts since creation or the last reset_stats()"""
        return dict(self._stats)

    def reset_stats(self) -> None:
        self._stats = {
            "reads": 0,
            "writes": 0,
            "increments": 0,
            "deletes": 0,
        }
        logger.debug("In-memory store statistics reset")
