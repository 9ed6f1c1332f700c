# app/core/cache.py - Short-TTL caches with explicit invalidation

import json
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class TTLCache(Protocol):
    default_ttl: int

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def invalidate(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryTTLCache:
    """Per-process cache. Values are returned as stored, callers must not mutate them."""

    def __init__(self, default_ttl: int = 60, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._entries[key] = (self._clock() + (ttl or self.default_ttl), value)

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisTTLCache:
    """Redis-backed cache shared between processes; values must be JSON serializable."""

    def __init__(self, redis_url: str, default_ttl: int = 60, prefix: str = "rentals:"):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.prefix = prefix
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        if not self.redis:
            self.redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self.redis.ping()

    async def get(self, key: str) -> Optional[Any]:
        try:
            await self.connect()
            value = await self.redis.get(self.prefix + key)
            return json.loads(value) if value else None
        except Exception as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            await self.connect()
            await self.redis.setex(self.prefix + key, ttl or self.default_ttl, json.dumps(value, default=str))
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    async def invalidate(self, key: str) -> None:
        # A failed delete would leave stale totals behind, so it propagates.
        await self.connect()
        await self.redis.delete(self.prefix + key)

    async def clear(self) -> None:
        await self.connect()
        async for key in self.redis.scan_iter(match=f"{self.prefix}*"):
            await self.redis.delete(key)

    async def close(self):
        if self.redis:
            await self.redis.aclose()


def build_cache(backend: str, default_ttl: int, redis_url: Optional[str] = None, prefix: str = "rentals:") -> TTLCache:
    if backend == "redis":
        if not redis_url:
            raise ValueError("CACHE_BACKEND=redis requires REDIS_URL")
        return RedisTTLCache(redis_url, default_ttl=default_ttl, prefix=prefix)
    if backend != "memory":
        raise ValueError(f"Unknown cache backend: {backend}")
    return MemoryTTLCache(default_ttl=default_ttl)
