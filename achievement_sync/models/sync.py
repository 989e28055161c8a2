"""Snapshot of one user's reconciled achievement state"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from achievement_sync.models.progress import (
    AchievementProgress,
    ProgressCounters,
    UserAchievementSummary,
)


class SyncSnapshot(BaseModel):
    """Result of a pipeline run (or of a warm cache hit)"""
    user_id: str = ""
    progress: Optional[ProgressCounters] = None
    achievements: list[AchievementProgress] = Field(default_factory=list)
    summary: Optional[UserAchievementSummary] = None
    loaded_at: Optional[datetime] = None
    from_cache: bool = False
    newly_completed: list[AchievementProgress] = Field(default_factory=list)

    @classmethod
    def empty(cls, user_id: str = "") -> "SyncSnapshot":
        return cls(user_id=user_id)

    @property
    def is_empty(self) -> bool:
        return self.progress is None and not self.achievements
