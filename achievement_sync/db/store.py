"""
Record store interface

Storage boundary for the three persisted entity kinds: progress counters,
per-achievement progress and achievement summaries. Implementations must:
- return None (never raise) for a record that does not exist
- apply increment_counter() as an atomic add on the storage side
- hand back timestamps as aware UTC datetimes (see utils.datetime_helpers.to_utc)
- store absent optional fields as NULL/None, never drop them
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from achievement_sync.models import (
    AchievementProgress,
    CounterKey,
    ProgressCounters,
    UserAchievementSummary,
)

# Columns list_achievement_progress() may sort by
SORTABLE_PROGRESS_FIELDS = ("updated_at", "created_at", "completed_at", "current_progress")


class RecordStore(ABC):
    """Persistent record storage used by the reconciliation engine"""

    # Progress counters

    @abstractmethod
    async def get_progress_counters(self, user_id: str) -> Optional[ProgressCounters]:
        ...

    @abstractmethod
    async def insert_progress_counters(self, counters: ProgressCounters) -> bool:
        """Insert the record unless one already exists; False when it did"""

    @abstractmethod
    async def save_progress_counters(self, counters: ProgressCounters) -> None:
        """Insert or fully replace the counters record"""

    @abstractmethod
    async def delete_progress_counters(self, user_id: str) -> bool:
        """Delete the record; False when nothing was deleted"""

    @abstractmethod
    async def increment_counter(
        self,
        user_id: str,
        counter_key: CounterKey,
        delta: int,
        updated_at: datetime,
    ) -> bool:
        """
        Atomically add delta to one counter and mark the record as auto-synced

        Returns:
            False if the record does not exist (nothing was changed)
        """

    @abstractmethod
    async def record_integrity_check(
        self,
        user_id: str,
        checked_at: datetime,
        reviews_from_source: int,
    ) -> bool:
        """Stamp a successful integrity check without touching the counters"""

    # Achievement progress

    @abstractmethod
    async def get_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> Optional[AchievementProgress]:
        ...

    @abstractmethod
    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        """Insert or fully replace one achievement progress record"""

    @abstractmethod
    async def list_achievement_progress(
        self,
        user_id: str,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[AchievementProgress]:
        ...

    @abstractmethod
    async def set_notification_shown(
        self, user_id: str, achievement_id: str, updated_at: datetime
    ) -> bool:
        """Flag an achievement's notification as shown; False if the record is missing"""

    # Summaries

    @abstractmethod
    async def get_summary(self, user_id: str) -> Optional[UserAchievementSummary]:
        ...

    @abstractmethod
    async def save_summary(self, summary: UserAchievementSummary) -> None:
        ...


def check_sort_field(order_by: str) -> str:
    if order_by not in SORTABLE_PROGRESS_FIELDS:
        raise ValueError(f"Cannot sort achievement progress by {order_by!r}")
    return order_by
