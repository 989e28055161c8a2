"""
ProgressStore - Durable Progress Counters

Owns each user's ProgressCounters record:
- Lazy creation by reconciling against the authoritative review and message sources
- Integrity verification with a freshness window
- Full recalculation when stored counters drift from the sources
- Atomic counter increments
"""

import logging
from datetime import timedelta
from typing import Optional, Union

from achievement_sync.config import AUTHORITATIVE_SCAN_LIMIT, INTEGRITY_FRESHNESS_SECONDS
from achievement_sync.db.store import RecordStore
from achievement_sync.exceptions import ProgressCreationError, ValidationError
from achievement_sync.models import (
    CounterKey,
    IntegrityBackup,
    IntegrityFlags,
    ProgressCounters,
    SyncSource,
)
from achievement_sync.observability.metrics import (
    integrity_checks_total,
    progress_recalculations_total,
)
from achievement_sync.sources.base import MessageSource, ReviewSource
from achievement_sync.utils.datetime_helpers import Clock, now_utc

logger = logging.getLogger(__name__)

# Allowed difference between stored and authoritative review counts
# (a review write may race the verification read)
REVIEW_COUNT_TOLERANCE = 1


def coerce_counter_key(counter_key: Union[CounterKey, str]) -> CounterKey:
    """Accept a CounterKey or its string value"""
    if isinstance(counter_key, CounterKey):
        return counter_key
    try:
        return CounterKey(counter_key)
    except ValueError:
        raise ValidationError(
            message=f"Unknown counter '{counter_key}'",
            field="counter_key",
            value=counter_key,
        )


def coerce_delta(delta: Union[int, float], user_id: Optional[str] = None) -> int:
    """Accept an int or an integral float (5.0); anything else is rejected"""
    if isinstance(delta, float) and delta.is_integer():
        return int(delta)
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(
            message="Increment must be a whole number",
            field="delta",
            value=delta,
            user_id=user_id,
        )
    return delta


class ProgressStore:
    """
    Service owning durable per-user progress counters.

    Responsibilities:
    - get/create/recalculate ProgressCounters
    - integrity verification against authoritative sources
    - atomic increments
    """

    # Current record layout version
    DATA_VERSION = 1

    def __init__(
        self,
        store: RecordStore,
        review_source: ReviewSource,
        message_source: MessageSource,
        clock: Clock = now_utc,
        integrity_freshness_seconds: int = INTEGRITY_FRESHNESS_SECONDS,
        scan_limit: int = AUTHORITATIVE_SCAN_LIMIT,
    ):
        """
        Initialize ProgressStore.

        Args:
            store: Record store holding the counters
            review_source: Authoritative review records
            message_source: Authoritative message counts
            clock: Returns the current aware UTC datetime
            integrity_freshness_seconds: Window during which a previous check is trusted
            scan_limit: Maximum records read per authoritative source
        """
        self.store = store
        self.review_source = review_source
        self.message_source = message_source
        self.clock = clock
        self.integrity_freshness = timedelta(seconds=integrity_freshness_seconds)
        self.scan_limit = scan_limit
        logger.debug("ProgressStore initialized")

    async def get(self, user_id: str) -> ProgressCounters:
        """
        Get the user's counters, reconciling them first when integrity is stale.

        Falls back to building a fresh record if the stored one cannot be read.

        Raises:
            ProgressCreationError: If a fresh record had to be built and that failed
        """
        try:
            record = await self.store.get_progress_counters(user_id)
        except Exception as e:
            logger.error(f"Error reading progress for user {user_id}, rebuilding: {e}", exc_info=True)
            return await self.create(user_id)

        if record is None:
            logger.info(f"No progress record for user {user_id}, creating")
            return await self.create(user_id)

        if not await self.verify_integrity(user_id, record):
            logger.warning(f"Integrity check failed for user {user_id}, recalculating")
            return await self.recalculate(user_id)

        return record

    async def create(self, user_id: str, min_data_version: int = DATA_VERSION) -> ProgressCounters:
        """
        Build the user's counters from the authoritative sources and persist them.

        The new record's data_version is at least min_data_version, so a
        rebuild never moves it backwards.

        If another caller created the record concurrently, that record wins
        and is returned instead.

        Raises:
            ProgressCreationError: If the review source or the record store fails
        """
        try:
            reviews = await self.review_source.list_user_reviews(user_id, self.scan_limit)
            review_count = len(reviews)
        except Exception as e:
            raise ProgressCreationError(
                message=f"Could not count reviews for user {user_id}: {e}",
                user_id=user_id,
                operation="create_progress",
                cause=e,
            ) from e

        message_count = await self._count_messages(user_id)

        logger.info(
            f"Authoritative counts for user {user_id}: "
            f"{review_count} reviews, {message_count} messages"
        )

        now = self.clock()
        record = ProgressCounters(
            user_id=user_id,
            total_reviews=review_count,
            total_music_minutes=0,
            total_app_minutes=0,
            total_messages=message_count,
            total_points=0,
            last_sync_time=now,
            data_version=max(min_data_version, self.DATA_VERSION),
            sync_source=SyncSource.MIGRATION,
            integrity_backup=IntegrityBackup(
                reviews_from_source=review_count,
                messages_from_source=message_count,
                last_verification=now,
            ),
            integrity_flags=IntegrityFlags(
                reviews_verified=True,
                messages_verified=True,
                last_integrity_check=now,
            ),
            created_at=now,
            updated_at=now,
        )

        try:
            inserted = await self.store.insert_progress_counters(record)
            if not inserted:
                existing = await self.store.get_progress_counters(user_id)
                if existing is not None:
                    logger.debug(f"Progress record for user {user_id} created concurrently, reusing it")
                    return existing
                await self.store.save_progress_counters(record)
        except Exception as e:
            raise ProgressCreationError(
                message=f"Could not save progress for user {user_id}: {e}",
                user_id=user_id,
                operation="create_progress",
                cause=e,
            ) from e

        logger.info(f"Created progress record for user {user_id}")
        return record

    async def verify_integrity(self, user_id: str, record: ProgressCounters) -> bool:
        """
        Check stored counters against the authoritative review count.

        A check performed within the freshness window is trusted without any
        I/O. Any failure while checking counts as invalid.

        Returns:
            True if the record can be trusted
        """
        now = self.clock()
        last_check = record.integrity_flags.last_integrity_check
        if now - last_check < self.integrity_freshness:
            integrity_checks_total.labels(result="fresh").inc()
            return True

        try:
            reviews = await self.review_source.list_user_reviews(user_id, self.scan_limit)
        except Exception as e:
            logger.error(f"Error verifying integrity for user {user_id}: {e}", exc_info=True)
            integrity_checks_total.labels(result="error").inc()
            return False

        authoritative = len(reviews)
        if abs(authoritative - record.total_reviews) > REVIEW_COUNT_TOLERANCE:
            logger.warning(
                f"Review count mismatch for user {user_id}: "
                f"stored {record.total_reviews}, source {authoritative}"
            )
            integrity_checks_total.labels(result="mismatch").inc()
            return False

        integrity_checks_total.labels(result="valid").inc()

        # Restart the freshness window; the check itself already succeeded
        try:
            await self.store.record_integrity_check(user_id, now, authoritative)
        except Exception as e:
            logger.warning(f"Could not stamp integrity check for user {user_id}: {e}")

        return True

    async def recalculate(self, user_id: str) -> ProgressCounters:
        """Discard the stored record and rebuild it from the authoritative sources"""
        progress_recalculations_total.inc()

        previous_version = self.DATA_VERSION
        try:
            existing = await self.store.get_progress_counters(user_id)
            if existing is not None:
                previous_version = existing.data_version
        except Exception as e:
            logger.warning(f"Could not read data version for user {user_id} before recalculating: {e}")

        try:
            deleted = await self.store.delete_progress_counters(user_id)
            if not deleted:
                logger.debug(f"No progress record to delete for user {user_id}")
        except Exception as e:
            logger.warning(f"Could not delete progress record for user {user_id}: {e}")

        return await self.create(user_id, min_data_version=previous_version)

    async def increment(self, user_id: str, counter_key: Union[CounterKey, str], delta: int) -> None:
        """
        Atomically add delta to one counter, creating the record first if needed.

        Raises:
            ValidationError: If delta is not positive or the counter is unknown
            ProgressCreationError: If the record had to be created and that failed
        """
        key = coerce_counter_key(counter_key)
        delta = coerce_delta(delta, user_id)
        if delta <= 0:
            raise ValidationError(
                message="Increment must be positive",
                field="delta",
                value=delta,
                user_id=user_id,
            )

        applied = await self.store.increment_counter(user_id, key, delta, self.clock())
        if not applied:
            logger.info(f"Progress record missing for user {user_id}, creating before increment")
            await self.create(user_id)
            applied = await self.store.increment_counter(user_id, key, delta, self.clock())
            if not applied:
                raise ProgressCreationError(
                    message=f"Progress record for user {user_id} vanished during increment",
                    user_id=user_id,
                    operation="increment",
                    context={"counter": key.value, "delta": delta},
                )

        logger.info(f"Incremented {key.value} by {delta} for user {user_id}")

    async def migrate_from_existing_data(self, user_id: str) -> ProgressCounters:
        """Create the user's record from the sources unless one already exists"""
        existing = await self.store.get_progress_counters(user_id)
        if existing is not None:
            logger.debug(f"Progress record already exists for user {user_id}")
            return existing
        return await self.create(user_id)

    async def apply_manual_correction(
        self,
        user_id: str,
        counter_key: Union[CounterKey, str],
        value: int,
    ) -> ProgressCounters:
        """
        Set a counter to an explicit value (support/admin correction).

        Unlike increments this is a read-modify-write; callers hold the
        user's lock around it.
        """
        key = coerce_counter_key(counter_key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                message="Counter value must be a non-negative integer",
                field="value",
                value=value,
                user_id=user_id,
            )

        record: Optional[ProgressCounters] = await self.store.get_progress_counters(user_id)
        if record is None:
            record = await self.create(user_id)

        now = self.clock()
        previous = record.counter_value(key)
        setattr(record, key.value, value)
        record.sync_source = SyncSource.MANUAL
        record.data_version += 1
        record.updated_at = now
        record.last_sync_time = now
        await self.store.save_progress_counters(record)

        logger.info(f"Manual correction for user {user_id}: {key.value} {previous} -> {value}")
        return record

    async def _count_messages(self, user_id: str) -> int:
        """Authoritative message count; an unreachable source counts as zero"""
        try:
            return await self.message_source.count_user_messages(user_id, self.scan_limit)
        except Exception as e:
            logger.warning(f"Could not count messages for user {user_id}, using 0: {e}")
            return 0
