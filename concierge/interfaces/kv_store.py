# interfaces/kv_store.py
"""
Shared key-value store used for sessions, quotas, turn locks and the
search cache.

RedisKeyValueStore talks to Redis through redis.asyncio; MemoryKeyValueStore
is the single-process fallback used in development and tests. Both honour
per-key TTLs and make increments atomic.
"""

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from loguru import logger

from concierge.config import Settings


class KeyValueStore:
    """Interface: get / set-with-TTL / delete / atomic increment / set-if-absent"""

    backend = "abstract"

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> int:
        raise NotImplementedError

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Increment and return the new value; TTL is applied when the key is created"""
        raise NotImplementedError

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store"""

    backend = "redis"

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        self.url = url
        self.client = client or aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            await self.client.set(key, value, ex=ttl_seconds)
        else:
            await self.client.set(key, value)

    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key))

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            if ttl_seconds:
                # NX keeps the first expiry; the window never slides
                pipe.expire(key, ttl_seconds, nx=True)
            results = await pipe.execute()
        return int(results[0])

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(key, value, ex=ttl_seconds, nx=True))

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


class MemoryKeyValueStore(KeyValueStore):
    """In-process store with TTL support; `clock` is injectable for tests"""

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, key: str) -> int:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return int(existed)

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        async with self._lock:
            current = self._live(key)
            if current is None:
                value = 1
                expires_at = self._expiry(ttl_seconds)
            else:
                value = int(current) + 1
                expires_at = self._data[key][1]
            self._data[key] = (str(value), expires_at)
            return value

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True


async def create_kv_store(config: Settings) -> KeyValueStore:
    """
    Connect to Redis, falling back to the in-memory store when it is
    not configured or not reachable.
    """
    if not config.REDIS_HOST:
        logger.warning("REDIS_HOST not set, using in-memory key-value store")
        return MemoryKeyValueStore()

    store = RedisKeyValueStore(config.redis_url)
    if await store.ping():
        logger.info(f"Key-value store connected to Redis at {config.REDIS_HOST}:{config.REDIS_PORT}")
        return store

    logger.warning("Redis connection failed, using in-memory key-value store")
    await store.close()
    return MemoryKeyValueStore()
