"""
Redis read-side cache for announcement views (Cache-Aside).

Reads and writes swallow Redis errors and behave as a miss. Invalidation
errors are raised to the caller.

Keys:
    announcements:list:{user_id}:{filters}   listing per viewer and filter set
    announcements:entry:{announcement_id}    single serialized announcement
"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from bulletin.config import Settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "announcements:"
LIST_PREFIX = f"{KEY_PREFIX}list:"
ENTRY_PREFIX = f"{KEY_PREFIX}entry:"


def list_key(user_id: str, filters: Dict[str, Any]) -> str:
    digest = hashlib.sha1(
        json.dumps(filters, sort_keys=True, default=str).encode()
    ).hexdigest()[:16]
    return f"{LIST_PREFIX}{user_id}:{digest}"


def entry_key(announcement_id: str) -> str:
    return f"{ENTRY_PREFIX}{announcement_id}"


class AnnouncementCache:
    """Async Redis cache. A None client turns every call into a no-op."""

    def __init__(self, redis_client: Any, ttl_seconds: int = 120):
        self._redis = redis_client
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def _get(self, key: str) -> Optional[Any]:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None

    async def _set(self, key: str, value: Any) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=self._ttl)
        except Exception as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    async def get_list(self, user_id: str, filters: Dict[str, Any]) -> Optional[Any]:
        return await self._get(list_key(user_id, filters))

    async def set_list(self, user_id: str, filters: Dict[str, Any], value: Any) -> None:
        await self._set(list_key(user_id, filters), value)

    async def get_entry(self, announcement_id: str) -> Optional[Any]:
        return await self._get(entry_key(announcement_id))

    async def set_entry(self, announcement_id: str, value: Any) -> None:
        await self._set(entry_key(announcement_id), value)

    async def invalidate_entry(self, announcement_id: str) -> None:
        """Narrow invalidation: a single announcement"""
        if not self._redis:
            return
        await self._redis.delete(entry_key(announcement_id))

    async def invalidate_all(self) -> int:
        """Broad invalidation: every listing and entry"""
        if not self._redis:
            return 0
        deleted = 0
        async for key in self._redis.scan_iter(match=f"{KEY_PREFIX}*", count=500):
            deleted += await self._redis.delete(key)
        return deleted


async def create_redis_client(settings: Settings) -> Any:
    """Return a connected async Redis client, or None if disabled/unavailable"""
    if not settings.REDIS_ENABLED or not settings.REDIS_URL:
        return None
    try:
        from redis.asyncio import Redis
        client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        await client.ping()
        logger.info("Redis cache connected: %s", settings.REDIS_URL.split("@")[-1])
        return client
    except Exception as e:
        logger.warning("Redis unavailable (announcement cache disabled): %s", e)
        return None


async def close_redis(client: Any) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.warning("Redis close error: %s", e)
