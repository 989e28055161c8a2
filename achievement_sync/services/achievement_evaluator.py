"""
AchievementEvaluator - Per-Achievement Progress

Maps a user's ProgressCounters onto the achievement catalog:
- Creates one AchievementProgress record per catalog entry on first evaluation
- Updates records only when progress or completion actually changed
- Detects false -> true completion transitions
- Keeps a bounded progress history per record
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from achievement_sync.config import PROGRESS_HISTORY_LIMIT
from achievement_sync.db.store import RecordStore
from achievement_sync.exceptions import RecordNotFoundError, ValidationError
from achievement_sync.gamification.catalog import get_achievement_definitions
from achievement_sync.models import (
    AchievementDefinition,
    AchievementProgress,
    DataSource,
    ProgressCounters,
    ProgressHistoryEntry,
)
from achievement_sync.observability.metrics import achievements_completed_total
from achievement_sync.services.progress_store import ProgressStore
from achievement_sync.utils.datetime_helpers import Clock, now_utc

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Outcome of one evaluation pass"""
    user_id: str
    records: list[AchievementProgress] = field(default_factory=list)
    newly_completed: list[AchievementProgress] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated


class AchievementEvaluator:
    """
    Service deriving achievement progress from counters.

    Re-running evaluation with unchanged counters writes nothing.
    """

    def __init__(
        self,
        store: RecordStore,
        progress_store: ProgressStore,
        clock: Clock = now_utc,
        history_limit: int = PROGRESS_HISTORY_LIMIT,
        definitions: Optional[Sequence[AchievementDefinition]] = None,
    ):
        self.store = store
        self.progress_store = progress_store
        self.clock = clock
        self.history_limit = history_limit
        self.definitions = list(definitions) if definitions is not None else get_achievement_definitions()
        logger.debug("AchievementEvaluator initialized")

    async def evaluate_all(
        self,
        user_id: str,
        counters: Optional[ProgressCounters] = None,
    ) -> list[AchievementProgress]:
        """
        Evaluate every catalog achievement for the user.

        Args:
            user_id: User ID
            counters: Freshly reconciled counters; read from the progress store when omitted

        Returns:
            One progress record per catalog achievement, in catalog order
        """
        result = await self.evaluate_user(user_id, counters)
        return result.records

    async def evaluate_user(
        self,
        user_id: str,
        counters: Optional[ProgressCounters] = None,
    ) -> EvaluationResult:
        """evaluate_all() with write and completion bookkeeping"""
        if counters is None:
            counters = await self.progress_store.get(user_id)

        result = EvaluationResult(user_id=user_id)
        now = self.clock()

        for definition in self.definitions:
            try:
                record = await self._process_achievement(user_id, definition, counters, now, result)
            except Exception as e:
                # One broken record must not block the rest of the catalog
                logger.error(
                    f"Error processing achievement {definition.id} for user {user_id}: {e}",
                    exc_info=True
                )
                result.failed += 1
                continue
            result.records.append(record)

        logger.info(
            f"Evaluated {len(result.records)} achievements for user {user_id}: "
            f"created={result.created}, updated={result.updated}, "
            f"newly_completed={len(result.newly_completed)}, failed={result.failed}"
        )
        return result

    async def _process_achievement(
        self,
        user_id: str,
        definition: AchievementDefinition,
        counters: ProgressCounters,
        now: datetime,
        result: EvaluationResult,
    ) -> AchievementProgress:
        current_value = counters.counter_value(definition.counter_key)
        existing = await self.store.get_achievement_progress(user_id, definition.id)

        if existing is None:
            is_completed = current_value >= definition.target_value
            record = AchievementProgress(
                id=AchievementProgress.make_id(user_id, definition.id),
                user_id=user_id,
                achievement_id=definition.id,
                current_progress=current_value,
                target_progress=definition.target_value,
                is_completed=is_completed,
                completed_at=now if is_completed else None,
                last_progress_update=now,
                verification_count=1,
                data_source=DataSource.CALCULATED,
                progress_history=[
                    ProgressHistoryEntry(
                        value=current_value,
                        timestamp=now,
                        source="initialization",
                        trigger="user_data_sync",
                    )
                ],
                created_at=now,
                updated_at=now,
            )
            await self.store.save_achievement_progress(record)
            result.created += 1
            if is_completed:
                self._record_completion(user_id, definition, record, result)
            logger.debug(f"Created achievement {definition.id} for user {user_id}")
            return record

        # Evaluation never lowers progress; only a manual correction may
        new_progress = existing.current_progress
        if current_value > existing.current_progress:
            new_progress = current_value
        elif current_value < existing.current_progress:
            logger.warning(
                f"Counter {definition.counter_key.value} for user {user_id} is below recorded "
                f"progress on {definition.id} ({current_value} < {existing.current_progress}), keeping recorded value"
            )

        new_completed = existing.is_completed or new_progress >= definition.target_value
        target_changed = existing.target_progress != definition.target_value

        if (
            new_progress == existing.current_progress
            and new_completed == existing.is_completed
            and not target_changed
        ):
            return existing

        just_completed = new_completed and not existing.is_completed

        existing.current_progress = new_progress
        existing.target_progress = definition.target_value
        existing.is_completed = new_completed
        existing.last_progress_update = now
        existing.verification_count += 1
        existing.data_source = DataSource.CALCULATED
        existing.updated_at = now
        if just_completed:
            existing.completed_at = now
        self._append_history(
            existing,
            ProgressHistoryEntry(
                value=current_value,
                timestamp=now,
                source="auto_update",
                trigger="progress_sync",
            ),
        )

        await self.store.save_achievement_progress(existing)
        result.updated += 1
        if just_completed:
            self._record_completion(user_id, definition, existing, result)
        logger.debug(f"Updated achievement {definition.id} for user {user_id}")
        return existing

    def _record_completion(
        self,
        user_id: str,
        definition: AchievementDefinition,
        record: AchievementProgress,
        result: EvaluationResult,
    ) -> None:
        result.newly_completed.append(record)
        achievements_completed_total.labels(achievement_id=definition.id).inc()
        logger.info(
            f"User {user_id} completed achievement: {definition.id} "
            f"({definition.title}) +{definition.points} points"
        )

    def _append_history(self, record: AchievementProgress, entry: ProgressHistoryEntry) -> None:
        record.progress_history.append(entry)
        overflow = len(record.progress_history) - self.history_limit
        if overflow > 0:
            del record.progress_history[:overflow]

    async def list_progress(self, user_id: str) -> list[AchievementProgress]:
        """All stored progress records for the user, most recently updated first"""
        return await self.store.list_achievement_progress(user_id, order_by="updated_at", descending=True)

    async def pending_notifications(self, user_id: str) -> list[AchievementProgress]:
        """Completed achievements whose notification has not been shown yet"""
        records = await self.list_progress(user_id)
        return [record for record in records if record.needs_notification]

    async def mark_notification_shown(self, user_id: str, achievement_id: str) -> bool:
        """
        Flag the achievement's completion notification as shown (idempotent).

        Returns:
            False if the user has no progress record for that achievement
        """
        updated = await self.store.set_notification_shown(user_id, achievement_id, self.clock())
        if not updated:
            logger.warning(f"No progress record {achievement_id} for user {user_id} to mark as notified")
            return False
        logger.info(f"Notification marked as shown for achievement {achievement_id}, user {user_id}")
        return True

    async def correct_progress(
        self,
        user_id: str,
        achievement_id: str,
        value: int,
    ) -> AchievementProgress:
        """
        Manually set an achievement's progress value.

        May lower current_progress. A completed achievement stays completed.

        Raises:
            ValidationError: Unknown achievement or negative value
            RecordNotFoundError: The user has no record for that achievement yet
        """
        definition = next((d for d in self.definitions if d.id == achievement_id), None)
        if definition is None:
            raise ValidationError(
                message=f"Unknown achievement '{achievement_id}'",
                field="achievement_id",
                value=achievement_id,
                user_id=user_id,
            )
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                message="Progress must be a non-negative integer",
                field="value",
                value=value,
                user_id=user_id,
            )

        record = await self.store.get_achievement_progress(user_id, achievement_id)
        if record is None:
            raise RecordNotFoundError(
                message=f"No progress for achievement {achievement_id}",
                record_type="AchievementProgress",
                record_id=AchievementProgress.make_id(user_id, achievement_id),
                user_id=user_id,
            )

        now = self.clock()
        previous = record.current_progress
        record.current_progress = value
        record.data_source = DataSource.MANUAL
        record.last_progress_update = now
        record.updated_at = now
        record.verification_count += 1
        if not record.is_completed and value >= definition.target_value:
            record.is_completed = True
            record.completed_at = now
        self._append_history(
            record,
            ProgressHistoryEntry(value=value, timestamp=now, source="manual_correction", trigger="manual"),
        )
        await self.store.save_achievement_progress(record)

        logger.info(f"Manual progress correction for user {user_id} on {achievement_id}: {previous} -> {value}")
        return record
