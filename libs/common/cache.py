"""
Key/value cache with TTL.
Backed by Redis when REDIS_URL is set, otherwise by an in-process dictionary.
"""
import fnmatch
import json
import logging
import os
import time
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Protocol, Tuple

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl: int, value: str) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def incr(self, key: str, ttl: int) -> int: ...


class InMemoryBackend(CacheBackend):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    def _alive(self, key: str) -> str | None:
        item = self._store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._alive(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)

    async def keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._store) if self._alive(key) is not None and fnmatch.fnmatchcase(key, pattern)]

    async def incr(self, key: str, ttl: int) -> int:
        current = self._alive(key)
        count = int(current) + 1 if current is not None else 1
        self._store[key] = (str(count), self._clock() + ttl)
        return count


class RedisBackend(CacheBackend):
    def __init__(self, url: str):
        self._client = redis_asyncio.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        await self._client.setex(key, ttl, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def keys(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]

    async def incr(self, key: str, ttl: int) -> int:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            count, _ = await pipe.execute()
        return int(count)


class Cache:
    """
    JSON cache facade.

    Backend failures are logged and behave like a miss so a cache outage
    never fails a request.
    """

    def __init__(self, backend: CacheBackend | None = None):
        self.backend = backend or InMemoryBackend()

    async def get(self, key: str) -> Any | None:
        try:
            data = await self.backend.get(key)
        except RedisError as e:
            logger.error("[Cache] get failed for %s: %s", key, e)
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        try:
            await self.backend.setex(key, ttl, json.dumps(value, default=str))
        except RedisError as e:
            logger.error("[Cache] set failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except RedisError as e:
            logger.error("[Cache] delete failed for %s: %s", key, e)

    async def invalidate(self, pattern: str) -> None:
        try:
            keys = await self.backend.keys(pattern)
            if keys:
                await self.backend.delete(*keys)
        except RedisError as e:
            logger.error("[Cache] invalidate failed for %s: %s", pattern, e)

    async def get_or_set(self, key: str, fetcher: Callable[[], Awaitable[Any]], ttl: int = DEFAULT_TTL) -> Any:
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await fetcher()
        await self.set(key, value, ttl)
        return value

    async def incr(self, key: str, ttl: int = 60) -> int:
        try:
            return await self.backend.incr(key, ttl)
        except RedisError as e:
            logger.error("[Cache] incr failed for %s: %s", key, e)
            return 1


class CacheKeys:
    @staticmethod
    def merchant_discounts(merchant_id: int) -> str:
        return f"merchant:{merchant_id}:discounts"

    @staticmethod
    def coupon_code(code: str) -> str:
        return f"coupon:code:{code}"

    @staticmethod
    def company_stats(company_id: int) -> str:
        return f"company:{company_id}:stats"

    @staticmethod
    def rate_limit(identifier: str, route: str) -> str:
        return f"ratelimit:{identifier}:{route}"


@lru_cache
def get_cache() -> Cache:
    """Process-wide cache configured from REDIS_URL."""
    url = os.getenv("REDIS_URL")
    if not url:
        logger.warning("[Cache] REDIS_URL not set - using in-memory cache")
        return Cache(InMemoryBackend())
    return Cache(RedisBackend(url))
