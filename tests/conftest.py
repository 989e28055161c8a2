"""Global test fixtures and utilities for achievement-sync tests"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Optional

from achievement_sync.db.memory_store import InMemoryRecordStore
from achievement_sync.models import (
    IntegrityBackup,
    IntegrityFlags,
    ProgressCounters,
    SyncSource,
)
from achievement_sync.services.achievement_evaluator import AchievementEvaluator
from achievement_sync.services.cache_governor import AppTimeThrottle, CacheGovernor
from achievement_sync.services.progress_store import ProgressStore
from achievement_sync.services.summary_aggregator import SummaryAggregator
from achievement_sync.services.sync_service import AchievementSyncService


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Controllable clock returning aware UTC datetimes"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeReviewSource:
    """Authoritative review source returning `count` records"""

    def __init__(self, count: int = 0):
        self.count = count
        self.error: Optional[Exception] = None
        self.calls = 0

    async def list_user_reviews(self, user_id: str, limit: int) -> list[dict]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [{"id": f"review-{i}", "user_id": user_id} for i in range(min(self.count, limit))]


class FakeMessageSource:
    """Authoritative message source returning `count` messages"""

    def __init__(self, count: int = 0):
        self.count = count
        self.error: Optional[Exception] = None
        self.calls = 0

    async def count_user_messages(self, user_id: str, limit: int) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return min(self.count, limit)


# ============================================================================
# Core fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-123"


@pytest.fixture
def clock():
    """Clock frozen at 2024-01-01 12:00 UTC"""
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def review_source():
    return FakeReviewSource()


@pytest.fixture
def message_source():
    return FakeMessageSource()


@pytest.fixture
def progress_store(store, review_source, message_source, clock):
    return ProgressStore(store, review_source, message_source, clock=clock)


@pytest.fixture
def evaluator(store, progress_store, clock):
    return AchievementEvaluator(store, progress_store, clock=clock)


@pytest.fixture
def aggregator(store, clock):
    return SummaryAggregator(store, clock=clock)


@pytest.fixture
def sync_service(progress_store, evaluator, aggregator, clock):
    return AchievementSyncService(
        progress_store,
        evaluator,
        aggregator,
        governor=CacheGovernor(clock=clock),
        app_time_throttle=AppTimeThrottle(clock=clock),
        clock=clock,
    )


@pytest.fixture
def make_counters(clock):
    """Factory for ProgressCounters records"""

    def _make(
        user_id: str = "user-123",
        total_reviews: int = 0,
        total_messages: int = 0,
        total_music_minutes: int = 0,
        total_app_minutes: int = 0,
        last_integrity_check: Optional[datetime] = None,
    ) -> ProgressCounters:
        now = clock()
        checked_at = last_integrity_check or now
        return ProgressCounters(
            user_id=user_id,
            total_reviews=total_reviews,
            total_messages=total_messages,
            total_music_minutes=total_music_minutes,
            total_app_minutes=total_app_minutes,
            last_sync_time=now,
            sync_source=SyncSource.AUTO,
            integrity_backup=IntegrityBackup(
                reviews_from_source=total_reviews,
                messages_from_source=total_messages,
                last_verification=checked_at,
            ),
            integrity_flags=IntegrityFlags(
                reviews_verified=True,
                messages_verified=True,
                last_integrity_check=checked_at,
            ),
            created_at=now,
            updated_at=now,
        )

    return _make


@pytest.fixture
def test_api_key():
    """Standard test API key"""
    return "test_api_key_12345"
