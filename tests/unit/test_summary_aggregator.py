"""Unit tests for SummaryAggregator"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from achievement_sync.cache.redis_client import summary_cache_key
from achievement_sync.gamification.catalog import get_achievement_definitions
from achievement_sync.models import AchievementCategory, AchievementProgress
from achievement_sync.services.summary_aggregator import SummaryAggregator, build_summary


@pytest.fixture
def make_record(clock, test_user_id):
    """Factory for AchievementProgress records"""

    def _make(achievement_id, current, target, completed=False, completed_minutes_ago=None):
        now = clock()
        completed_at = None
        if completed:
            completed_at = now - timedelta(minutes=completed_minutes_ago or 0)
        return AchievementProgress(
            id=AchievementProgress.make_id(test_user_id, achievement_id),
            user_id=test_user_id,
            achievement_id=achievement_id,
            current_progress=current,
            target_progress=target,
            is_completed=completed,
            completed_at=completed_at,
            last_progress_update=now,
            created_at=now,
            updated_at=now,
        )

    return _make


class TestBuildSummary:
    """Pure summary computation"""

    def test_totals_and_percentage(self, make_record, clock, test_user_id):
        """Test points and percentage over the full catalog"""
        records = [
            make_record("first_review", 3, 1, completed=True),
            make_record("first_message", 1, 1, completed=True),
            make_record("review_enthusiast", 3, 10),
        ]

        summary = build_summary(test_user_id, records, get_achievement_definitions(), clock())

        assert summary.total_achievements == 10
        assert summary.completed_achievements == 2
        assert summary.total_points == 15
        assert summary.completion_percentage == pytest.approx(20.0)
        assert summary.last_updated == clock()

    def test_category_stats(self, make_record, clock, test_user_id):
        """Test records fold into their definition's category"""
        records = [
            make_record("first_review", 1, 1, completed=True),
            make_record("review_enthusiast", 1, 10),
            make_record("music_lover", 60, 60, completed=True),
        ]

        summary = build_summary(test_user_id, records, get_achievement_definitions(), clock())

        reviews = summary.category_stats[AchievementCategory.REVIEWS]
        assert (reviews.total, reviews.completed, reviews.points) == (2, 1, 10)
        music = summary.category_stats[AchievementCategory.MUSIC]
        assert (music.total, music.completed, music.points) == (1, 1, 30)
        assert AchievementCategory.SOCIAL not in summary.category_stats

    def test_unknown_definition_is_skipped(self, make_record, clock, test_user_id):
        """Test a retired achievement neither counts nor raises"""
        records = [
            make_record("first_review", 1, 1, completed=True),
            make_record("retired_badge", 5, 5, completed=True),
        ]

        summary = build_summary(test_user_id, records, get_achievement_definitions(), clock())

        assert summary.completed_achievements == 1
        assert summary.total_points == 10
        assert all(r.achievement_id != "retired_badge" for r in summary.recent_achievements)

    def test_recent_sorted_and_capped(self, make_record, clock, test_user_id):
        """Test recent achievements are newest first, at most five"""
        ids = ["first_review", "review_enthusiast", "review_master", "review_legend",
               "first_message", "social_butterfly"]
        records = [
            make_record(achievement_id, 1, 1, completed=True, completed_minutes_ago=minutes)
            for minutes, achievement_id in enumerate(ids)
        ]

        summary = build_summary(test_user_id, records, get_achievement_definitions(), clock())

        assert [r.achievement_id for r in summary.recent_achievements] == ids[:5]

    def test_upcoming_sorted_by_ratio_and_capped(self, make_record, clock, test_user_id):
        """Test upcoming achievements are closest to completion first, at most three"""
        records = [
            make_record("review_enthusiast", 9, 10),
            make_record("review_master", 10, 50),
            make_record("music_lover", 30, 60),
            make_record("power_user", 1100, 1200),
            make_record("social_butterfly", 1, 50),
        ]

        summary = build_summary(test_user_id, records, get_achievement_definitions(), clock())

        assert [r.achievement_id for r in summary.upcoming_achievements] == [
            "power_user", "review_enthusiast", "music_lover"
        ]

    def test_empty_records(self, clock, test_user_id):
        """Test a user without records has a zero summary"""
        summary = build_summary(test_user_id, [], get_achievement_definitions(), clock())

        assert summary.completed_achievements == 0
        assert summary.completion_percentage == 0.0
        assert summary.recent_achievements == []
        assert summary.upcoming_achievements == []


class TestRecompute:
    """recompute() and get_summary()"""

    @pytest.mark.asyncio
    async def test_recompute_persists(self, aggregator, store, evaluator, make_counters, test_user_id):
        """Test the summary is derived from stored records and saved"""
        await evaluator.evaluate_all(test_user_id, make_counters(test_user_id, total_reviews=10))

        summary = await aggregator.recompute(test_user_id)

        assert summary.completed_achievements == 2
        assert summary.total_points == 60
        assert summary.completion_percentage == summary.completed_achievements / summary.total_achievements * 100
        assert await store.get_summary(test_user_id) == summary

    @pytest.mark.asyncio
    async def test_get_summary_recomputes_when_absent(self, aggregator, test_user_id):
        """Test a missing summary is computed on read"""
        summary = await aggregator.get_summary(test_user_id)

        assert summary.user_id == test_user_id
        assert summary.total_achievements == 10

    @pytest.mark.asyncio
    async def test_get_summary_reads_cache_first(self, store, clock, evaluator, make_counters, test_user_id):
        """Test a cached summary is returned without touching the store"""
        await evaluator.evaluate_all(test_user_id, make_counters(test_user_id, total_reviews=1))
        computed = await SummaryAggregator(store, clock=clock).recompute(test_user_id)
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=computed.model_dump(mode="json"))
        aggregator = SummaryAggregator(store, cache=cache, clock=clock)
        store.reset_stats()

        summary = await aggregator.get_summary(test_user_id)

        assert summary == computed
        assert store.get_stats()["reads"] == 0
        cache.get.assert_awaited_once_with(summary_cache_key(test_user_id))

    @pytest.mark.asyncio
    async def test_recompute_writes_cache(self, store, clock, test_user_id):
        """Test recompute refreshes the read cache with the configured TTL"""
        cache = AsyncMock()
        aggregator = SummaryAggregator(store, cache=cache, clock=clock, cache_ttl=120)

        await aggregator.recompute(test_user_id)

        cache.set.assert_awaited_once()
        args, kwargs = cache.set.call_args
        assert args[0] == summary_cache_key(test_user_id)
        assert kwargs["ttl"] == 120

    @pytest.mark.asyncio
    async def test_malformed_cache_entry_discarded(self, store, clock, test_user_id):
        """Test an unreadable cached summary falls back to the store"""
        cache = AsyncMock()
        cache.get = AsyncMock(return_value={"user_id": test_user_id})
        aggregator = SummaryAggregator(store, cache=cache, clock=clock)

        summary = await aggregator.get_summary(test_user_id)

        assert summary.total_achievements == 10
        cache.delete.assert_awaited_with(summary_cache_key(test_user_id))
