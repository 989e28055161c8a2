"""
Redis read cache for achievement summaries.

Summaries are derived data: the record store stays authoritative and the
cache only saves a recompute or a store round-trip. Any Redis problem is
therefore logged, counted and reported as a miss. Nothing here raises.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

SUMMARY_KEY_PREFIX = "achievement_summary"


def summary_cache_key(user_id: str) -> str:
    return f"{SUMMARY_KEY_PREFIX}:{user_id}"


class RedisCache:
    """JSON values in Redis with optional TTL; disables itself when Redis is unreachable"""

    def __init__(self, redis_url: str = "redis://localhost:6379/0", enabled: bool = True):
        self.redis_url = redis_url
        self.enabled = enabled
        self._client: Optional[redis.Redis] = None
        self._stats = dict.fromkeys(("hits", "misses", "sets", "deletes", "errors"), 0)

    async def connect(self) -> None:
        """Open the client and check it with PING; on failure run without a cache"""
        if not self.enabled:
            logger.info("Summary cache disabled by configuration")
            return

        client = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=10,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.warning(f"Redis unreachable at {self.redis_url} ({e}); summaries served from the record store")
            self.enabled = False
            return

        self._client = client
        logger.info(f"Summary cache connected: {self.redis_url}")

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as e:
            logger.error(f"Error closing Redis client: {e}")

    @property
    def connected(self) -> bool:
        return self.enabled and self._client is not None

    def _failed(self, operation: str, key: str, error: Exception) -> None:
        self._stats["errors"] += 1
        logger.error(f"Redis {operation} failed for '{key}': {error}")

    async def get(self, key: str) -> Optional[Any]:
        """Decoded value, or None on a miss, a decode error or a Redis error"""
        if not self.connected:
            self._stats["misses"] += 1
            return None

        try:
            raw = await self._client.get(key)
        except Exception as e:
            self._failed("GET", key, e)
            return None

        if raw is None:
            self._stats["misses"] += 1
            return None

        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            self._failed("decode", key, e)
            return None

        self._stats["hits"] += 1
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store value as JSON; ttl in seconds, None keeps it until deleted"""
        if not self.connected:
            return False

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self._failed("encode", key, e)
            return False

        try:
            if ttl:
                await self._client.setex(key, ttl, payload)
            else:
                await self._client.set(key, payload)
        except Exception as e:
            self._failed("SET", key, e)
            return False

        self._stats["sets"] += 1
        return True

    async def delete(self, key: str) -> bool:
        """True when a key was removed"""
        if not self.connected:
            return False

        try:
            removed = await self._client.delete(key)
        except Exception as e:
            self._failed("DELETE", key, e)
            return False

        self._stats["deletes"] += 1
        return removed > 0

    def get_stats(self) -> dict[str, Any]:
        reads = self._stats["hits"] + self._stats["misses"]
        return {
            "enabled": self.enabled,
            **self._stats,
            "total_reads": reads,
            "hit_rate_percent": round(self._stats["hits"] / reads * 100, 2) if reads else 0.0,
        }
