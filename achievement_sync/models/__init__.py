"""Domain models"""
from achievement_sync.models.achievement import (
    AchievementCategory,
    AchievementDefinition,
    AchievementRarity,
    CounterKey,
)
from achievement_sync.models.progress import (
    AchievementProgress,
    CategoryStats,
    DataSource,
    IntegrityBackup,
    IntegrityFlags,
    ProgressCounters,
    ProgressHistoryEntry,
    SyncSource,
    UserAchievementSummary,
)
from achievement_sync.models.sync import SyncSnapshot

__all__ = [
    "AchievementCategory",
    "AchievementDefinition",
    "AchievementRarity",
    "CounterKey",
    "AchievementProgress",
    "CategoryStats",
    "DataSource",
    "IntegrityBackup",
    "IntegrityFlags",
    "ProgressCounters",
    "ProgressHistoryEntry",
    "SyncSource",
    "UserAchievementSummary",
    "SyncSnapshot",
]
