"""Unit tests for AchievementSyncService"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from achievement_sync.exceptions import ProgressCreationError, SyncError, ValidationError
from achievement_sync.models import CounterKey, SyncSnapshot


def by_id(records):
    return {r.achievement_id: r for r in records}


class TestSoftSync:
    """sync_on_view() and refresh() with the cache window"""

    @pytest.mark.asyncio
    async def test_first_view_runs_pipeline(self, sync_service, review_source, test_user_id):
        """Test a cold view reconciles, evaluates and summarizes"""
        review_source.count = 1

        snapshot = await sync_service.sync_on_view(test_user_id)

        assert snapshot.from_cache is False
        assert snapshot.progress.total_reviews == 1
        assert len(snapshot.achievements) == 10
        assert snapshot.summary.total_points == 10
        assert [r.achievement_id for r in snapshot.newly_completed] == ["first_review"]

    @pytest.mark.asyncio
    async def test_cache_window(self, sync_service, clock, test_user_id):
        """Test two views within 5 minutes run once; a third after 5 minutes runs again"""
        await sync_service.sync_on_view(test_user_id)
        clock.advance(minutes=2)
        second = await sync_service.sync_on_view(test_user_id)

        assert sync_service.get_stats()["pipeline_runs"] == 1
        assert second.from_cache is True

        clock.advance(minutes=3)
        third = await sync_service.sync_on_view(test_user_id)

        assert sync_service.get_stats()["pipeline_runs"] == 2
        assert third.from_cache is False

    @pytest.mark.asyncio
    async def test_refresh_respects_cache(self, sync_service, test_user_id):
        """Test pull-to-refresh never forces a run"""
        await sync_service.sync_on_view(test_user_id)

        snapshot = await sync_service.refresh(test_user_id)

        assert snapshot.from_cache is True
        assert sync_service.get_stats()["pipeline_runs"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_views_share_one_run(self, sync_service, test_user_id):
        """Test simultaneous views for one user run the pipeline once"""
        snapshots = await asyncio.gather(*[sync_service.sync_on_view(test_user_id) for _ in range(5)])

        assert sync_service.get_stats()["pipeline_runs"] == 1
        assert sum(1 for s in snapshots if not s.from_cache) == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_snapshot(self, sync_service, aggregator, clock, test_user_id):
        """Test a transient failure returns the last good state"""
        first = await sync_service.sync_on_view(test_user_id)
        clock.advance(minutes=10)
        aggregator.recompute = AsyncMock(side_effect=RuntimeError("store timeout"))

        snapshot = await sync_service.sync_on_view(test_user_id)

        assert snapshot.from_cache is True
        assert snapshot.summary == first.summary
        assert sync_service.get_stats()["pipeline_failures"] == 1

    @pytest.mark.asyncio
    async def test_failure_without_history_is_empty(self, sync_service, aggregator, test_user_id):
        """Test a failure on the very first view yields an empty snapshot"""
        aggregator.recompute = AsyncMock(side_effect=RuntimeError("store timeout"))

        snapshot = await sync_service.sync_on_view(test_user_id)

        assert snapshot.user_id == test_user_id
        assert snapshot.is_empty

    @pytest.mark.asyncio
    async def test_creation_failure_propagates(self, sync_service, review_source, test_user_id):
        """Test a record that cannot be created is a hard error"""
        review_source.error = RuntimeError("reviews unavailable")

        with pytest.raises(ProgressCreationError):
            await sync_service.sync_on_view(test_user_id)

    @pytest.mark.asyncio
    async def test_partial_evaluation_stays_cold(self, sync_service, store, test_user_id):
        """Test a run with an unevaluated achievement is returned but not cached"""
        original_save = store.save_achievement_progress

        async def flaky_save(progress):
            if progress.achievement_id == "music_lover":
                raise RuntimeError("write conflict")
            await original_save(progress)

        store.save_achievement_progress = flaky_save

        first = await sync_service.sync_on_view(test_user_id)
        second = await sync_service.sync_on_view(test_user_id)

        assert first.from_cache is False
        assert "music_lover" not in by_id(first.achievements)
        assert second.from_cache is False
        assert sync_service.get_stats()["pipeline_runs"] == 2
        assert sync_service.get_stats()["partial_runs"] == 2


class TestForceReinit:
    """force_reinit()"""

    @pytest.mark.asyncio
    async def test_force_bypasses_cache(self, sync_service, test_user_id):
        """Test a forced run happens even while warm"""
        await sync_service.sync_on_view(test_user_id)

        snapshot = await sync_service.force_reinit(test_user_id)

        assert snapshot.from_cache is False
        assert sync_service.get_stats()["pipeline_runs"] == 2

    @pytest.mark.asyncio
    async def test_force_failure_raises_retryable(self, sync_service, aggregator, test_user_id):
        """Test a failed forced run surfaces a retryable SyncError"""
        aggregator.recompute = AsyncMock(side_effect=RuntimeError("store timeout"))

        with pytest.raises(SyncError) as exc_info:
            await sync_service.force_reinit(test_user_id)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_partial_evaluation_raises(self, sync_service, store, test_user_id):
        """Test a forced run that leaves an achievement unevaluated is not reported as success"""
        original_save = store.save_achievement_progress

        async def flaky_save(progress):
            if progress.achievement_id == "music_lover":
                raise RuntimeError("write conflict")
            await original_save(progress)

        store.save_achievement_progress = flaky_save

        with pytest.raises(SyncError) as exc_info:
            await sync_service.force_reinit(test_user_id)

        assert exc_info.value.retryable is True
        assert exc_info.value.context["failed"] == 1
        assert sync_service.governor.is_warm(test_user_id) is False

    @pytest.mark.asyncio
    async def test_force_resets_app_time_timer(self, sync_service, store, test_user_id):
        """Test held app minutes are written by the next increment after a force"""
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 2)
        await sync_service.force_reinit(test_user_id)

        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)

        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_app_minutes == 4


class TestIncrementAndReevaluate:
    """increment_and_reevaluate()"""

    @pytest.mark.asyncio
    async def test_first_review_scenario(self, sync_service, test_user_id):
        """Test 0 reviews + 1 completes first_review worth 10 points"""
        snapshot = await sync_service.increment_and_reevaluate(test_user_id, CounterKey.REVIEWS, 1)

        first_review = by_id(snapshot.achievements)["first_review"]
        assert first_review.is_completed is True
        assert first_review.completed_at is not None
        assert snapshot.summary.total_points == 10
        assert [r.achievement_id for r in snapshot.newly_completed] == ["first_review"]

    @pytest.mark.asyncio
    async def test_increment_bypasses_cache(self, sync_service, test_user_id):
        """Test increments re-evaluate even while warm"""
        await sync_service.sync_on_view(test_user_id)

        snapshot = await sync_service.increment_and_reevaluate(test_user_id, "total_messages", 1)

        assert snapshot.from_cache is False
        assert by_id(snapshot.achievements)["first_message"].is_completed is True
        assert sync_service.get_stats()["pipeline_runs"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_increments(self, sync_service, store, test_user_id):
        """Test N concurrent increments for one user all land"""
        await asyncio.gather(*[
            sync_service.increment_and_reevaluate(test_user_id, CounterKey.REVIEWS, 1)
            for _ in range(12)
        ])

        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_reviews == 12
        records = by_id(await sync_service.get_achievements(test_user_id))
        assert records["review_enthusiast"].is_completed is True
        assert records["review_enthusiast"].current_progress == 12

    @pytest.mark.asyncio
    async def test_non_positive_delta_is_noop(self, sync_service, store, test_user_id):
        """Test zero or negative deltas write nothing"""
        snapshot = await sync_service.increment_and_reevaluate(test_user_id, CounterKey.REVIEWS, 0)

        assert snapshot.is_empty
        assert await store.get_progress_counters(test_user_id) is None

    @pytest.mark.asyncio
    async def test_integral_float_delta_is_applied(self, sync_service, store, test_user_id):
        """Test a whole-number float such as 5.0 is written like an int"""
        await sync_service.sync_on_view(test_user_id)
        before = (await store.get_progress_counters(test_user_id)).total_music_minutes

        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.MUSIC_MINUTES, 5.0)

        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_music_minutes == before + 5

    @pytest.mark.asyncio
    async def test_fractional_delta_rejected(self, sync_service, store, test_user_id):
        """Test a fractional delta raises instead of being silently dropped"""
        with pytest.raises(ValidationError):
            await sync_service.increment_and_reevaluate(test_user_id, CounterKey.MUSIC_MINUTES, 2.5)

        assert await store.get_progress_counters(test_user_id) is None

    @pytest.mark.asyncio
    async def test_app_minutes_are_throttled(self, sync_service, store, clock, test_user_id):
        """Test app minutes are written at most once per flush window"""
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)
        clock.advance(minutes=1)
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)
        clock.advance(minutes=1)
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)

        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_app_minutes == 1
        assert sync_service.app_time_throttle.pending(test_user_id) == 2

        clock.advance(minutes=4)
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 1)

        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_app_minutes == 4

    @pytest.mark.asyncio
    async def test_failed_write_restores_app_minutes(self, sync_service, progress_store, test_user_id):
        """Test minutes from a failed write stay pending"""
        progress_store.increment = AsyncMock(side_effect=RuntimeError("write failed"))

        with pytest.raises(RuntimeError):
            await sync_service.increment_and_reevaluate(test_user_id, CounterKey.APP_MINUTES, 3)

        assert sync_service.app_time_throttle.pending(test_user_id) == 3

    @pytest.mark.asyncio
    async def test_reevaluation_failure_degrades(self, sync_service, store, aggregator, test_user_id):
        """Test the counter write survives a failed re-evaluation"""
        aggregator.recompute = AsyncMock(side_effect=RuntimeError("summary write failed"))

        snapshot = await sync_service.increment_and_reevaluate(test_user_id, CounterKey.REVIEWS, 2)

        assert snapshot.is_empty
        stored = await store.get_progress_counters(test_user_id)
        assert stored.total_reviews == 2


class TestBlankUser:
    """Absent user context makes every operation a no-op"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", [None, "", "   "])
    async def test_operations_are_noops(self, sync_service, store, user_id):
        """Test no operation raises or writes for a blank user"""
        assert (await sync_service.sync_on_view(user_id)).is_empty
        assert (await sync_service.refresh(user_id)).is_empty
        assert (await sync_service.force_reinit(user_id)).is_empty
        assert (await sync_service.increment_and_reevaluate(user_id, CounterKey.REVIEWS, 1)).is_empty
        assert (await sync_service.handle_external_change(user_id)).is_empty
        assert await sync_service.get_progress(user_id) is None
        assert await sync_service.get_achievements(user_id) == []
        assert await sync_service.get_summary(user_id) is None
        assert await sync_service.get_pending_notifications(user_id) == []
        assert await sync_service.mark_notification_shown(user_id, "first_review") is False
        assert await sync_service.run_diagnostics(user_id) == {}
        assert store.get_stats()["writes"] == 0


class TestReadAccessors:
    """get_progress(), get_achievements(), get_summary()"""

    @pytest.mark.asyncio
    async def test_accessors_after_sync(self, sync_service, review_source, message_source, test_user_id):
        """Test accessors return the reconciled state"""
        review_source.count = 10
        message_source.count = 2
        await sync_service.sync_on_view(test_user_id)

        progress = await sync_service.get_progress(test_user_id)
        achievements = await sync_service.get_achievements(test_user_id)
        summary = await sync_service.get_summary(test_user_id)

        assert progress.total_reviews == 10
        assert progress.total_messages == 2
        assert len(achievements) == 10
        assert summary.completed_achievements == 3
        assert summary.total_points == 65

    def test_get_achievement_definition(self, sync_service):
        """Test catalog lookup through the facade"""
        assert sync_service.get_achievement_definition("power_user").target_value == 1200
        assert sync_service.get_achievement_definition("missing") is None


class TestNotifications:
    """Pending notifications"""

    @pytest.mark.asyncio
    async def test_notification_flow(self, sync_service, test_user_id):
        """Test a completion is pending until marked as shown"""
        await sync_service.increment_and_reevaluate(test_user_id, CounterKey.REVIEWS, 1)

        pending = await sync_service.get_pending_notifications(test_user_id)
        assert [r.achievement_id for r in pending] == ["first_review"]

        assert await sync_service.mark_notification_shown(test_user_id, "first_review") is True
        assert await sync_service.get_pending_notifications(test_user_id) == []


class TestSubscriptions:
    """subscribe() and handle_external_change()"""

    @pytest.mark.asyncio
    async def test_listener_receives_snapshots(self, sync_service, test_user_id):
        """Test sync and async listeners are called after each pipeline run"""
        received = []
        async_listener = AsyncMock()
        sync_service.subscribe(test_user_id, received.append)
        sync_service.subscribe(test_user_id, async_listener)

        await sync_service.sync_on_view(test_user_id)

        assert len(received) == 1
        assert isinstance(received[0], SyncSnapshot)
        async_listener.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_hits_do_not_notify(self, sync_service, test_user_id):
        """Test warm views do not call listeners"""
        listener = Mock()
        sync_service.subscribe(test_user_id, listener)

        await sync_service.sync_on_view(test_user_id)
        await sync_service.sync_on_view(test_user_id)

        assert listener.call_count == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery(self, sync_service, test_user_id):
        """Test the cancel function unsubscribes (and is safe to repeat)"""
        listener = Mock()
        cancel = sync_service.subscribe(test_user_id, listener)

        cancel()
        cancel()
        await sync_service.sync_on_view(test_user_id)

        listener.assert_not_called()
        assert sync_service.get_stats()["listeners"] == 0

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, sync_service, test_user_id):
        """Test one broken listener does not affect the caller or other listeners"""
        broken = Mock(side_effect=RuntimeError("listener bug"))
        healthy = Mock()
        sync_service.subscribe(test_user_id, broken)
        sync_service.subscribe(test_user_id, healthy)

        snapshot = await sync_service.sync_on_view(test_user_id)

        assert snapshot.from_cache is False
        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_external_change_runs_pipeline(self, sync_service, store, clock, test_user_id):
        """Test a change notification re-evaluates even while warm"""
        await sync_service.sync_on_view(test_user_id)
        await store.increment_counter(test_user_id, CounterKey.MUSIC_MINUTES, 60, clock())

        snapshot = await sync_service.handle_external_change(test_user_id)

        assert snapshot.from_cache is False
        assert by_id(snapshot.achievements)["music_lover"].is_completed is True


class TestCorrections:
    """Manual corrections through the facade"""

    @pytest.mark.asyncio
    async def test_correct_counter_invalidates_cache(self, sync_service, test_user_id):
        """Test the next view after a correction runs the pipeline"""
        await sync_service.sync_on_view(test_user_id)

        counters = await sync_service.correct_counter(test_user_id, CounterKey.MUSIC_MINUTES, 600)
        snapshot = await sync_service.sync_on_view(test_user_id)

        assert counters.total_music_minutes == 600
        assert snapshot.from_cache is False
        assert by_id(snapshot.achievements)["music_addict"].is_completed is True

    @pytest.mark.asyncio
    async def test_correct_progress_refreshes_summary(self, sync_service, test_user_id):
        """Test a progress correction is reflected in the summary"""
        await sync_service.sync_on_view(test_user_id)

        record = await sync_service.correct_progress(test_user_id, "first_message", 1)
        summary = await sync_service.get_summary(test_user_id)

        assert record.is_completed is True
        assert summary.total_points == 5


class TestDiagnostics:
    """run_diagnostics()"""

    @pytest.mark.asyncio
    async def test_report_for_new_user(self, sync_service, store, test_user_id):
        """Test diagnostics are read-only and flag a missing record"""
        report = await sync_service.run_diagnostics(test_user_id)

        assert report["catalog_size"] == 10
        assert report["progress"] is None
        assert "no progress counters record" in report["issues"]
        assert store.get_stats()["writes"] == 0

    @pytest.mark.asyncio
    async def test_report_after_sync(self, sync_service, review_source, test_user_id):
        """Test a synced user has a consistent report"""
        review_source.count = 1
        await sync_service.sync_on_view(test_user_id)

        report = await sync_service.run_diagnostics(test_user_id)

        assert report["issues"] == []
        assert report["errors"] == []
        assert report["achievement_records"] == 10
        assert report["completed_achievements"] == 1
        assert report["pending_notifications"] == 1
        assert report["summary"]["total_points"] == 10
