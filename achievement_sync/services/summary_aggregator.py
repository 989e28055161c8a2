"""
SummaryAggregator - User Achievement Summary

Folds a user's achievement progress records into totals, category stats
and recent/upcoming shortlists. The summary is always recomputed from the
full record list, never patched incrementally.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from achievement_sync.cache.redis_client import RedisCache, summary_cache_key
from achievement_sync.config import SUMMARY_CACHE_TTL
from achievement_sync.db.store import RecordStore
from achievement_sync.gamification.catalog import get_achievement_definitions
from achievement_sync.models import (
    AchievementDefinition,
    AchievementProgress,
    CategoryStats,
    UserAchievementSummary,
)
from achievement_sync.utils.datetime_helpers import Clock, now_utc

logger = logging.getLogger(__name__)

RECENT_ACHIEVEMENTS_LIMIT = 5
UPCOMING_ACHIEVEMENTS_LIMIT = 3


def build_summary(
    user_id: str,
    records: Iterable[AchievementProgress],
    definitions: Sequence[AchievementDefinition],
    now: datetime,
) -> UserAchievementSummary:
    """
    Compute a summary from progress records.

    Records referencing an achievement that is no longer in the catalog are
    ignored. The completion percentage is taken over the full catalog, so
    achievements never evaluated count as incomplete.
    """
    by_id = {definition.id: definition for definition in definitions}
    category_stats: dict = {}
    completed: list[AchievementProgress] = []
    incomplete: list[AchievementProgress] = []
    total_points = 0

    for record in records:
        definition = by_id.get(record.achievement_id)
        if definition is None:
            logger.debug(f"Skipping progress for unknown achievement {record.achievement_id}")
            continue

        stats = category_stats.setdefault(definition.category, CategoryStats())
        stats.total += 1
        if record.is_completed:
            completed.append(record)
            total_points += definition.points
            stats.completed += 1
            stats.points += definition.points
        else:
            incomplete.append(record)

    total = len(definitions)
    percentage = (len(completed) / total * 100) if total > 0 else 0.0

    recent = sorted(
        completed,
        key=lambda r: r.completed_at.timestamp() if r.completed_at else float("-inf"),
        reverse=True,
    )[:RECENT_ACHIEVEMENTS_LIMIT]
    upcoming = sorted(incomplete, key=lambda r: r.completion_ratio, reverse=True)[:UPCOMING_ACHIEVEMENTS_LIMIT]

    return UserAchievementSummary(
        user_id=user_id,
        total_achievements=total,
        completed_achievements=len(completed),
        total_points=total_points,
        completion_percentage=percentage,
        category_stats=category_stats,
        recent_achievements=recent,
        upcoming_achievements=upcoming,
        last_updated=now,
    )


class SummaryAggregator:
    """Recomputes, persists and serves UserAchievementSummary records"""

    def __init__(
        self,
        store: RecordStore,
        cache: Optional[RedisCache] = None,
        clock: Clock = now_utc,
        cache_ttl: int = SUMMARY_CACHE_TTL,
        definitions: Optional[Sequence[AchievementDefinition]] = None,
    ):
        self.store = store
        self.cache = cache
        self.clock = clock
        self.cache_ttl = cache_ttl
        self.definitions = list(definitions) if definitions is not None else get_achievement_definitions()

    async def recompute(self, user_id: str) -> UserAchievementSummary:
        """Rebuild the user's summary from all stored progress records"""
        records = await self.store.list_achievement_progress(user_id)
        summary = build_summary(user_id, records, self.definitions, self.clock())

        await self.store.save_summary(summary)
        await self._cache_summary(summary)

        logger.info(
            f"Summary for user {user_id}: {summary.completed_achievements}/"
            f"{summary.total_achievements} completed, {summary.total_points} points"
        )
        return summary

    async def get_summary(self, user_id: str) -> UserAchievementSummary:
        """
        Read the user's summary: Redis, then the record store, then a recompute.
        """
        if self.cache is not None:
            cached = await self.cache.get(summary_cache_key(user_id))
            if cached is not None:
                try:
                    return UserAchievementSummary.model_validate(cached)
                except PydanticValidationError as e:
                    logger.warning(f"Discarding malformed cached summary for user {user_id}: {e}")
                    await self.cache.delete(summary_cache_key(user_id))

        summary = await self.store.get_summary(user_id)
        if summary is not None:
            await self._cache_summary(summary)
            return summary

        return await self.recompute(user_id)

    async def invalidate(self, user_id: str) -> None:
        """Drop the cached copy so the next read comes from the record store"""
        if self.cache is not None:
            await self.cache.delete(summary_cache_key(user_id))

    async def _cache_summary(self, summary: UserAchievementSummary) -> None:
        if self.cache is None:
            return
        await self.cache.set(
            summary_cache_key(summary.user_id),
            summary.model_dump(mode="json"),
            ttl=self.cache_ttl,
        )
