"""Progress, per-achievement state and summary models"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from achievement_sync.models.achievement import AchievementCategory, CounterKey


class SyncSource(str, Enum):
    """Who last wrote a progress counters record"""
    MANUAL = "manual"
    AUTO = "auto"
    MIGRATION = "migration"


class DataSource(str, Enum):
    """Origin of an achievement progress value"""
    CALCULATED = "calculated"
    MANUAL = "manual"
    MIGRATION = "migration"


class IntegrityBackup(BaseModel):
    """Authoritative counts observed at the last reconciliation"""
    reviews_from_source: int = 0
    messages_from_source: int = 0
    last_verification: datetime


class IntegrityFlags(BaseModel):
    """Integrity status of the stored counters"""
    reviews_verified: bool = False
    messages_verified: bool = False
    last_integrity_check: datetime


class ProgressCounters(BaseModel):
    """Durable per-user activity counters"""
    user_id: str
    total_reviews: int = Field(0, ge=0)
    total_music_minutes: int = Field(0, ge=0)
    total_app_minutes: int = Field(0, ge=0)
    total_messages: int = Field(0, ge=0)
    total_points: int = Field(0, ge=0)
    last_sync_time: datetime
    data_version: int = 1
    sync_source: SyncSource = SyncSource.AUTO
    integrity_backup: IntegrityBackup
    integrity_flags: IntegrityFlags
    created_at: datetime
    updated_at: datetime

    def counter_value(self, counter_key: CounterKey) -> int:
        """Current value of a tracked counter"""
        return getattr(self, counter_key.value)


class ProgressHistoryEntry(BaseModel):
    """One observed progress value"""
    value: int
    timestamp: datetime
    source: str
    trigger: str


class AchievementProgress(BaseModel):
    """A user's progress towards a single achievement"""
    id: str
    user_id: str
    achievement_id: str
    current_progress: int = 0
    target_progress: int
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    notification_shown: bool = False
    last_progress_update: datetime
    verification_count: int = 1
    data_source: DataSource = DataSource.CALCULATED
    progress_history: list[ProgressHistoryEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def make_id(user_id: str, achievement_id: str) -> str:
        return f"{user_id}:{achievement_id}"

    @property
    def completion_ratio(self) -> float:
        if self.target_progress <= 0:
            return 0.0
        return self.current_progress / self.target_progress

    @property
    def needs_notification(self) -> bool:
        return self.is_completed and not self.notification_shown


class CategoryStats(BaseModel):
    """Totals for a single achievement category"""
    total: int = 0
    completed: int = 0
    points: int = 0


class UserAchievementSummary(BaseModel):
    """Derived view over all of a user's achievement progress"""
    user_id: str
    total_achievements: int
    completed_achievements: int
    total_points: int
    completion_percentage: float
    category_stats: dict[AchievementCategory, CategoryStats] = Field(default_factory=dict)
    recent_achievements: list[AchievementProgress] = Field(default_factory=list)
    upcoming_achievements: list[AchievementProgress] = Field(default_factory=list)
    last_updated: datetime
