"""
AchievementSyncService - Synchronization Facade

Single entry point for callers (API routes, background increment calls).
Runs the reconciliation pipeline in its fixed order:

    ProgressStore.get -> AchievementEvaluator -> SummaryAggregator

while respecting the CacheGovernor for soft syncs. Every operation for one
user runs under that user's lock; different users never wait on each other.
"""

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from achievement_sync.exceptions import ProgressCreationError, SyncError
from achievement_sync.gamification.catalog import (
    catalog_size,
    get_achievement_definition,
)
from achievement_sync.models import (
    AchievementDefinition,
    AchievementProgress,
    CounterKey,
    ProgressCounters,
    SyncSnapshot,
    UserAchievementSummary,
)
from achievement_sync.observability.metrics import (
    app_time_flushes_total,
    counter_increments_total,
    pipeline_duration_seconds,
    pipeline_runs_total,
)
from achievement_sync.services.achievement_evaluator import AchievementEvaluator
from achievement_sync.services.cache_governor import AppTimeThrottle, CacheGovernor
from achievement_sync.services.progress_store import ProgressStore, coerce_counter_key, coerce_delta
from achievement_sync.services.summary_aggregator import SummaryAggregator
from achievement_sync.utils.datetime_helpers import Clock, now_utc
from achievement_sync.utils.user_locks import UserLockRegistry

logger = logging.getLogger(__name__)

ChangeListener = Callable[[SyncSnapshot], Union[None, Awaitable[None]]]


def _is_blank(user_id: Optional[str]) -> bool:
    return user_id is None or not str(user_id).strip()


class AchievementSyncService:
    """
    Facade over the progress store, evaluator, aggregator and governor.

    Responsibilities:
    - Soft syncs that honour the cache window (sync_on_view, refresh)
    - Forced reinitialization
    - Increments followed by immediate re-evaluation
    - Read accessors, notifications and change subscriptions
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        evaluator: AchievementEvaluator,
        aggregator: SummaryAggregator,
        governor: Optional[CacheGovernor] = None,
        app_time_throttle: Optional[AppTimeThrottle] = None,
        locks: Optional[UserLockRegistry] = None,
        clock: Clock = now_utc,
    ):
        """
        Initialize AchievementSyncService.

        Args:
            progress_store: Owner of the progress counters
            evaluator: Owner of per-achievement progress records
            aggregator: Owner of the user summaries
            governor: Soft-sync cache policy
            app_time_throttle: Flush throttle for app-minute increments
            locks: Per-user lock registry
            clock: Returns the current aware UTC datetime
        """
        self.progress_store = progress_store
        self.evaluator = evaluator
        self.aggregator = aggregator
        self.clock = clock
        self.governor = governor or CacheGovernor(clock=clock)
        self.app_time_throttle = app_time_throttle or AppTimeThrottle(clock=clock)
        self.locks = locks or UserLockRegistry()
        self._listeners: Dict[str, List[ChangeListener]] = {}
        self._stats = {"pipeline_runs": 0, "pipeline_failures": 0, "cache_hits": 0, "partial_runs": 0}
        logger.debug("AchievementSyncService initialized")

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    async def sync_on_view(self, user_id: str) -> SyncSnapshot:
        """Soft sync when the achievements view opens"""
        return await self._soft_sync(user_id, trigger="view")

    async def refresh(self, user_id: str) -> SyncSnapshot:
        """Pull-to-refresh; same as a soft sync, never forced"""
        return await self._soft_sync(user_id, trigger="refresh")

    async def force_reinit(self, user_id: str) -> SyncSnapshot:
        """
        Clear all cached state for the user and run the pipeline unconditionally.

        Raises:
            SyncError: If the pipeline fails or leaves achievements unevaluated (retryable)
        """
        if _is_blank(user_id):
            return SyncSnapshot.empty()

        async with self.locks.hold(user_id):
            self.governor.invalidate(user_id)
            self.app_time_throttle.reset(user_id)
            await self.aggregator.invalidate(user_id)
            try:
                snapshot = await self._run_pipeline(user_id, trigger="force", strict=True)
            except SyncError:
                raise
            except Exception as e:
                raise SyncError(
                    message=f"Forced reinitialization failed for user {user_id}: {e}",
                    user_id=user_id,
                    operation="force_reinit",
                    cause=e,
                ) from e

        await self._notify_listeners(user_id, snapshot)
        return snapshot

    async def increment_and_reevaluate(
        self,
        user_id: str,
        counter_key: Union[CounterKey, str],
        delta: int,
    ) -> SyncSnapshot:
        """
        Add delta to one counter, then re-run evaluation and aggregation.

        Bypasses the cache window. App-minute increments are held locally and
        written at most once per flush window.

        Raises:
            ValidationError: Unknown counter or a fractional delta
            ProgressCreationError / DatabaseError: The counter write failed
        """
        if _is_blank(user_id):
            return SyncSnapshot.empty()

        key = coerce_counter_key(counter_key)
        delta = coerce_delta(delta, user_id)
        if delta <= 0:
            logger.debug(f"Ignoring non-positive increment {delta} of {key.value} for user {user_id}")
            return self.governor.last_good(user_id) or SyncSnapshot.empty(user_id)

        async with self.locks.hold(user_id):
            amount = delta
            if key == CounterKey.APP_MINUTES:
                amount = self.app_time_throttle.take_due(user_id, delta)
                if amount == 0:
                    app_time_flushes_total.labels(outcome="held").inc()
                    return self.governor.last_good(user_id) or SyncSnapshot.empty(user_id)

            try:
                await self.progress_store.increment(user_id, key, amount)
            except Exception:
                if key == CounterKey.APP_MINUTES:
                    self.app_time_throttle.restore(user_id, amount)
                    app_time_flushes_total.labels(outcome="failed").inc()
                raise

            if key == CounterKey.APP_MINUTES:
                self.app_time_throttle.confirm_flush(user_id)
                app_time_flushes_total.labels(outcome="flushed").inc()
            counter_increments_total.labels(counter=key.value).inc(amount)

            try:
                snapshot = await self._run_pipeline(user_id, trigger="increment")
            except Exception as e:
                # The counter write succeeded; the next pipeline run catches up
                logger.error(f"Re-evaluation after increment failed for user {user_id}: {e}", exc_info=True)
                return self.governor.last_good(user_id) or SyncSnapshot.empty(user_id)

        await self._notify_listeners(user_id, snapshot)
        return snapshot

    async def handle_external_change(self, user_id: str) -> SyncSnapshot:
        """
        Entry point for change notifications from the record store.

        Runs the same pipeline as a manual sync, bypassing the cache window.
        """
        if _is_blank(user_id):
            return SyncSnapshot.empty()

        async with self.locks.hold(user_id):
            try:
                snapshot = await self._run_pipeline(user_id, trigger="external")
            except ProgressCreationError:
                raise
            except Exception as e:
                logger.error(f"Pipeline after external change failed for user {user_id}: {e}", exc_info=True)
                return self.governor.last_good(user_id) or SyncSnapshot.empty(user_id)

        await self._notify_listeners(user_id, snapshot)
        return snapshot

    async def _soft_sync(self, user_id: str, trigger: str) -> SyncSnapshot:
        if _is_blank(user_id):
            return SyncSnapshot.empty()

        async with self.locks.hold(user_id):
            # Checked under the lock so concurrent views share one pipeline run
            cached = self.governor.cached(user_id)
            if cached is not None:
                self._stats["cache_hits"] += 1
                logger.debug(f"Soft sync for user {user_id} served from cache")
                return cached

            try:
                snapshot = await self._run_pipeline(user_id, trigger=trigger)
            except ProgressCreationError:
                raise
            except Exception as e:
                logger.error(f"Soft sync failed for user {user_id}, keeping last good state: {e}", exc_info=True)
                return self.governor.last_good(user_id) or SyncSnapshot.empty(user_id)

        await self._notify_listeners(user_id, snapshot)
        return snapshot

    async def _run_pipeline(self, user_id: str, trigger: str, strict: bool = False) -> SyncSnapshot:
        """
        Progress Store -> Evaluator -> Aggregator, strictly in that order.

        Only a run that evaluated every achievement marks the user Warm. With
        strict=True a partial run raises SyncError instead of returning.
        """
        start = time.perf_counter()
        self._stats["pipeline_runs"] += 1
        try:
            progress = await self.progress_store.get(user_id)
            evaluation = await self.evaluator.evaluate_user(user_id, progress)
            summary = await self.aggregator.recompute(user_id)
        except Exception:
            self._stats["pipeline_failures"] += 1
            pipeline_runs_total.labels(trigger=trigger, status="error").inc()
            raise
        finally:
            pipeline_duration_seconds.labels(trigger=trigger).observe(time.perf_counter() - start)

        snapshot = SyncSnapshot(
            user_id=user_id,
            progress=progress,
            achievements=evaluation.records,
            summary=summary,
            loaded_at=self.clock(),
            from_cache=False,
            newly_completed=evaluation.newly_completed,
        )

        if evaluation.failed:
            # Partial results are returned but never open a cache window
            self._stats["partial_runs"] += 1
            pipeline_runs_total.labels(trigger=trigger, status="partial").inc()
            logger.warning(
                f"Pipeline ({trigger}) for user {user_id} left {evaluation.failed} achievements "
                f"unevaluated; cache stays cold"
            )
            if strict:
                raise SyncError(
                    message=f"{evaluation.failed} achievements failed to evaluate for user {user_id}",
                    user_id=user_id,
                    operation=f"pipeline_{trigger}",
                    context={"failed": evaluation.failed, "evaluated": len(evaluation.records)},
                )
            return snapshot

        self.governor.mark_loaded(user_id, snapshot)
        pipeline_runs_total.labels(trigger=trigger, status="success").inc()

        logger.info(
            f"Pipeline ({trigger}) for user {user_id}: {len(evaluation.records)} achievements, "
            f"{len(evaluation.newly_completed)} newly completed, "
            f"{(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return snapshot

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    async def get_progress(self, user_id: str) -> Optional[ProgressCounters]:
        if _is_blank(user_id):
            return None
        async with self.locks.hold(user_id):
            return await self.progress_store.get(user_id)

    async def get_achievements(self, user_id: str) -> List[AchievementProgress]:
        if _is_blank(user_id):
            return []
        return await self.evaluator.list_progress(user_id)

    async def get_summary(self, user_id: str) -> Optional[UserAchievementSummary]:
        if _is_blank(user_id):
            return None
        return await self.aggregator.get_summary(user_id)

    def get_achievement_definition(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return get_achievement_definition(achievement_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def get_pending_notifications(self, user_id: str) -> List[AchievementProgress]:
        """Completed achievements whose notification has not been shown yet"""
        if _is_blank(user_id):
            return []
        return await self.evaluator.pending_notifications(user_id)

    async def mark_notification_shown(self, user_id: str, achievement_id: str) -> bool:
        if _is_blank(user_id):
            return False
        async with self.locks.hold(user_id):
            return await self.evaluator.mark_notification_shown(user_id, achievement_id)

    # ------------------------------------------------------------------
    # Manual corrections
    # ------------------------------------------------------------------

    async def correct_counter(
        self,
        user_id: str,
        counter_key: Union[CounterKey, str],
        value: int,
    ) -> Optional[ProgressCounters]:
        """Set a counter to an explicit value; the next soft sync re-evaluates"""
        if _is_blank(user_id):
            return None
        async with self.locks.hold(user_id):
            counters = await self.progress_store.apply_manual_correction(user_id, counter_key, value)
            self.governor.invalidate(user_id)
        return counters

    async def correct_progress(
        self,
        user_id: str,
        achievement_id: str,
        value: int,
    ) -> Optional[AchievementProgress]:
        """Set one achievement's progress explicitly and refresh the summary"""
        if _is_blank(user_id):
            return None
        async with self.locks.hold(user_id):
            record = await self.evaluator.correct_progress(user_id, achievement_id, value)
            await self.aggregator.recompute(user_id)
            self.governor.invalidate(user_id)
        return record

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, user_id: str, on_change: ChangeListener) -> Callable[[], None]:
        """
        Register a listener called with the snapshot after every pipeline run
        for the user. Listeners may be plain functions or coroutines.

        Returns:
            Function that removes the listener (safe to call more than once)
        """
        if _is_blank(user_id):
            return lambda: None

        self._listeners.setdefault(user_id, []).append(on_change)
        logger.debug(f"Listener subscribed for user {user_id}")

        def cancel() -> None:
            listeners = self._listeners.get(user_id)
            if not listeners or on_change not in listeners:
                return
            listeners.remove(on_change)
            if not listeners:
                del self._listeners[user_id]
            logger.debug(f"Listener unsubscribed for user {user_id}")

        return cancel

    async def _notify_listeners(self, user_id: str, snapshot: SyncSnapshot) -> None:
        for listener in list(self._listeners.get(user_id, [])):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change listener failed for user {user_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def run_diagnostics(self, user_id: str) -> Dict[str, Any]:
        """
        Read-only consistency report for one user.

        Never reconciles or writes; read failures are reported in "errors".
        """
        if _is_blank(user_id):
            return {}

        store = self.progress_store.store
        report: Dict[str, Any] = {
            "user_id": user_id,
            "catalog_size": catalog_size(),
            "progress": None,
            "achievement_records": 0,
            "completed_achievements": 0,
            "pending_notifications": 0,
            "summary": None,
            "issues": [],
            "errors": [],
            "cache": {
                "pending_app_minutes": self.app_time_throttle.pending(user_id),
                "has_last_good": self.governor.last_good(user_id) is not None,
            },
        }

        try:
            progress = await store.get_progress_counters(user_id)
            if progress is None:
                report["issues"].append("no progress counters record")
            else:
                report["progress"] = progress.model_dump(mode="json")
        except Exception as e:
            report["errors"].append(f"progress: {e}")

        completed_known: Optional[int] = None
        try:
            records = await store.list_achievement_progress(user_id)
            report["achievement_records"] = len(records)
            report["completed_achievements"] = sum(1 for r in records if r.is_completed)
            completed_known = sum(
                1 for r in records if r.is_completed and get_achievement_definition(r.achievement_id) is not None
            )
            report["pending_notifications"] = sum(1 for r in records if r.needs_notification)
            unknown = sorted(r.achievement_id for r in records if get_achievement_definition(r.achievement_id) is None)
            if unknown:
                report["issues"].append(f"progress for unknown achievements: {', '.join(unknown)}")
            if len(records) - len(unknown) < report["catalog_size"]:
                report["issues"].append("some catalog achievements have not been evaluated yet")
        except Exception as e:
            report["errors"].append(f"achievements: {e}")

        try:
            summary = await store.get_summary(user_id)
            if summary is not None:
                report["summary"] = summary.model_dump(mode="json")
                if completed_known is not None and summary.completed_achievements != completed_known:
                    report["issues"].append("summary is out of date with achievement records")
        except Exception as e:
            report["errors"].append(f"summary: {e}")

        logger.info(
            f"Diagnostics for user {user_id}: {len(report['issues'])} issues, {len(report['errors'])} errors"
        )
        return report

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "governor": self.governor.get_stats(),
            "listeners": sum(len(v) for v in self._listeners.values()),
        }
