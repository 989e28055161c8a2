"""
Service layer for achievement-sync

Pipeline: ProgressStore -> AchievementEvaluator -> SummaryAggregator,
driven by AchievementSyncService and gated by CacheGovernor.
"""

from achievement_sync.services.container import ServiceContainer, build_postgres_container
from achievement_sync.services.progress_store import ProgressStore
from achievement_sync.services.achievement_evaluator import AchievementEvaluator, EvaluationResult
from achievement_sync.services.summary_aggregator import SummaryAggregator, build_summary
from achievement_sync.services.cache_governor import AppTimeThrottle, CacheGovernor
from achievement_sync.services.sync_service import AchievementSyncService

__all__ = [
    "ServiceContainer",
    "build_postgres_container",
    "ProgressStore",
    "AchievementEvaluator",
    "EvaluationResult",
    "SummaryAggregator",
    "build_summary",
    "AppTimeThrottle",
    "CacheGovernor",
    "AchievementSyncService",
]
