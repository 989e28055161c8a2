"""
Service Container - Dependency Injection Container

Builds the reconciliation services once at process start and hands the same
instances to every caller. Services are lazy-loaded on first access.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from achievement_sync.cache.redis_client import RedisCache
from achievement_sync.db.store import RecordStore
from achievement_sync.sources.base import MessageSource, ReviewSource
from achievement_sync.utils.datetime_helpers import Clock, now_utc

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Dependency injection container for the achievement services.

    Infrastructure dependencies (store, sources, cache) are injected;
    services are created on first access via properties.
    """

    # Infrastructure dependencies (injected)
    store: RecordStore
    review_source: ReviewSource
    message_source: MessageSource
    cache: Optional[RedisCache] = None
    clock: Clock = now_utc

    # Services (lazy-loaded via properties)
    _progress_store: Optional[object] = field(default=None, init=False, repr=False)
    _evaluator: Optional[object] = field(default=None, init=False, repr=False)
    _aggregator: Optional[object] = field(default=None, init=False, repr=False)
    _sync_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def progress_store(self):
        """Get ProgressStore instance (lazy-loaded)"""
        if self._progress_store is None:
            from achievement_sync.services.progress_store import ProgressStore
            self._progress_store = ProgressStore(
                self.store,
                self.review_source,
                self.message_source,
                clock=self.clock,
            )
            logger.debug("ProgressStore instantiated")
        return self._progress_store

    @property
    def evaluator(self):
        """Get AchievementEvaluator instance (lazy-loaded)"""
        if self._evaluator is None:
            from achievement_sync.services.achievement_evaluator import AchievementEvaluator
            self._evaluator = AchievementEvaluator(self.store, self.progress_store, clock=self.clock)
            logger.debug("AchievementEvaluator instantiated")
        return self._evaluator

    @property
    def aggregator(self):
        """Get SummaryAggregator instance (lazy-loaded)"""
        if self._aggregator is None:
            from achievement_sync.services.summary_aggregator import SummaryAggregator
            self._aggregator = SummaryAggregator(self.store, cache=self.cache, clock=self.clock)
            logger.debug("SummaryAggregator instantiated")
        return self._aggregator

    @property
    def sync_service(self):
        """Get AchievementSyncService instance (lazy-loaded)"""
        if self._sync_service is None:
            from achievement_sync.services.sync_service import AchievementSyncService
            self._sync_service = AchievementSyncService(
                self.progress_store,
                self.evaluator,
                self.aggregator,
                clock=self.clock,
            )
            logger.debug("AchievementSyncService instantiated")
        return self._sync_service


def build_postgres_container(db, cache: Optional[RedisCache] = None) -> ServiceContainer:
    """
    Container backed by PostgreSQL for records and authoritative sources.

    Args:
        db: Initialized Database instance
        cache: Optional connected RedisCache for summary reads
    """
    from achievement_sync.config import MESSAGE_SOURCE_TABLES, REVIEWS_TABLE
    from achievement_sync.db.postgres_store import PostgresRecordStore
    from achievement_sync.sources.postgres import PostgresMessageSource, PostgresReviewSource

    container = ServiceContainer(
        store=PostgresRecordStore(db),
        review_source=PostgresReviewSource(db, REVIEWS_TABLE),
        message_source=PostgresMessageSource(db, MESSAGE_SOURCE_TABLES),
        cache=cache,
    )
    logger.info("Service container initialized (PostgreSQL)")
    return container
