"""
Cache-validity governor and app-time throttle

CacheGovernor decides whether a soft sync may reuse the last pipeline
result for a user (Warm) or must run the full pipeline (Cold).

AppTimeThrottle holds app-usage minutes locally and releases them for a
durable write at most once per flush window per user. Its timer is
independent of the governor's cache window.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from achievement_sync.config import (
    APP_TIME_FLUSH_SECONDS,
    CACHE_VALID_SECONDS,
    SNAPSHOT_RETAIN_SECONDS,
)
from achievement_sync.models import SyncSnapshot
from achievement_sync.observability.metrics import sync_cache_decisions_total
from achievement_sync.utils.datetime_helpers import Clock, now_utc

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    user_id: str
    loaded_at: datetime
    snapshot: SyncSnapshot


class CacheGovernor:
    """Per-user Warm/Cold bookkeeping for soft syncs"""

    def __init__(
        self,
        valid_seconds: int = CACHE_VALID_SECONDS,
        clock: Clock = now_utc,
        retain_seconds: int = SNAPSHOT_RETAIN_SECONDS,
    ):
        self.valid_for = timedelta(seconds=valid_seconds)
        # last_good snapshots outlive the cache window, but not forever
        self.retain_for = max(timedelta(seconds=retain_seconds), self.valid_for)
        self.clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._last_sweep = clock()
        self._stats = {"warm": 0, "cold": 0, "invalidations": 0, "evictions": 0}

    def is_warm(self, user_id: str, force: bool = False) -> bool:
        """
        True if a soft sync for user_id may skip the pipeline.

        Cold when forced, never loaded, loaded for another user, older than
        the validity window, or when the cached achievement list is empty.
        """
        entry = self._entries.get(user_id)
        warm = (
            not force
            and entry is not None
            and entry.user_id == user_id
            and self.clock() - entry.loaded_at < self.valid_for
            and len(entry.snapshot.achievements) > 0
        )
        decision = "warm" if warm else "cold"
        self._stats[decision] += 1
        sync_cache_decisions_total.labels(decision=decision).inc()
        return warm

    def cached(self, user_id: str) -> Optional[SyncSnapshot]:
        """Snapshot of the last successful run, only while Warm"""
        if not self.is_warm(user_id):
            return None
        return self._entries[user_id].snapshot.model_copy(update={"from_cache": True, "newly_completed": []})

    def last_good(self, user_id: str) -> Optional[SyncSnapshot]:
        """Snapshot of the last successful run, kept for the retention window"""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self.clock() - entry.loaded_at >= self.retain_for:
            self._evict(user_id)
            return None
        return entry.snapshot.model_copy(update={"from_cache": True, "newly_completed": []})

    def mark_loaded(self, user_id: str, snapshot: SyncSnapshot) -> None:
        """Cold -> Warm after a successful pipeline run"""
        self._entries[user_id] = _CacheEntry(
            user_id=user_id,
            loaded_at=snapshot.loaded_at or self.clock(),
            snapshot=snapshot,
        )
        logger.debug(f"Cache window opened for user {user_id}")
        self._maybe_sweep()

    def invalidate(self, user_id: str) -> None:
        """Drop all bookkeeping for the user"""
        if self._entries.pop(user_id, None) is not None:
            self._stats["invalidations"] += 1
            logger.debug(f"Cache invalidated for user {user_id}")

    def clear_expired_entries(self) -> int:
        """
        Drop snapshots older than the retention window.

        Runs on its own at most once per cache window from mark_loaded(),
        but can be called explicitly for cleanup.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        self._last_sweep = now
        expired = [
            user_id for user_id, entry in self._entries.items()
            if now - entry.loaded_at >= self.retain_for
        ]
        for user_id in expired:
            self._evict(user_id)

        if expired:
            logger.info(f"Evicted {len(expired)} expired sync snapshots")
        return len(expired)

    def _maybe_sweep(self) -> None:
        if self.clock() - self._last_sweep >= self.valid_for:
            self.clear_expired_entries()

    def _evict(self, user_id: str) -> None:
        del self._entries[user_id]
        self._stats["evictions"] += 1

    def get_stats(self) -> dict:
        return {**self._stats, "entries": len(self._entries)}


class AppTimeThrottle:
    """Accumulates app-usage minutes and flushes them once per window per user"""

    def __init__(self, flush_seconds: int = APP_TIME_FLUSH_SECONDS, clock: Clock = now_utc):
        self.flush_interval = timedelta(seconds=flush_seconds)
        self.clock = clock
        self._pending: Dict[str, int] = {}
        self._last_flush: Dict[str, datetime] = {}
        self._last_sweep = clock()

    def take_due(self, user_id: str, minutes: int) -> int:
        """
        Add minutes to the user's accumulator.

        Returns:
            Minutes to write now (the whole accumulator) when the flush window
            has elapsed, otherwise 0 and the minutes stay pending
        """
        total = self._pending.get(user_id, 0) + minutes
        last_flush = self._last_flush.get(user_id)
        now = self.clock()

        if last_flush is not None and now - last_flush < self.flush_interval:
            self._pending[user_id] = total
            logger.debug(f"Holding {total} app minutes for user {user_id}")
            return 0

        self._pending.pop(user_id, None)
        return total

    def confirm_flush(self, user_id: str) -> None:
        """Start a new flush window after a successful write"""
        now = self.clock()
        self._last_flush[user_id] = now
        if now - self._last_sweep >= self.flush_interval:
            self.clear_expired_entries()

    def restore(self, user_id: str, minutes: int) -> None:
        """Put minutes from a failed write back into the accumulator"""
        if minutes > 0:
            self._pending[user_id] = self._pending.get(user_id, 0) + minutes

    def pending(self, user_id: str) -> int:
        return self._pending.get(user_id, 0)

    def reset(self, user_id: str) -> None:
        """Forget the flush timer; pending minutes go out with the next increment"""
        self._last_flush.pop(user_id, None)

    def clear_expired_entries(self) -> int:
        """
        Forget flush timers whose window has elapsed and that hold no minutes.

        An elapsed timer and a missing one behave the same in take_due(), so
        this never changes when minutes are written.

        Returns:
            Number of timers removed
        """
        now = self.clock()
        self._last_sweep = now
        expired = [
            user_id for user_id, flushed_at in self._last_flush.items()
            if now - flushed_at >= self.flush_interval and user_id not in self._pending
        ]
        for user_id in expired:
            del self._last_flush[user_id]

        if expired:
            logger.debug(f"Cleared {len(expired)} idle app-time timers")
        return len(expired)

    def tracked_users(self) -> int:
        return len(self._last_flush.keys() | self._pending.keys())
