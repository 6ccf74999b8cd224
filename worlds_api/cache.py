"""Redis-backed shared cache: JSON values with TTL plus a TTL-bounded distributed lock."""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import redis
import redis.asyncio as aioredis

from worlds_api.errors import LockAcquisitionError

logger = logging.getLogger("worlds.cache")

# Delete only when the caller still owns the lock; an expired holder must not drop a successor's lock.
RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def create_redis_client(url: str) -> aioredis.Redis:
    return aioredis.from_url(url, decode_responses=True)


@dataclass(frozen=True)
class LockHandle:
    key: str
    token: str
    ttl_ms: int
    acquired_at: float

    def expired(self) -> bool:
        """Ownership is advisory: past the TTL the lock may belong to someone else."""
        return (time.monotonic() - self.acquired_at) * 1000 >= self.ttl_ms


class RedisCacheStorage:
    """Narrow async view over Redis used by the attempt limiter.

    get/set/remove are single commands with no cross-command atomicity; callers that
    read-modify-write must hold the lock for that key.
    """

    def __init__(self, client: aioredis.Redis):
        self._client = client

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.set(key, json.dumps(value), ex=ttl_seconds)

    async def remove(self, key: str) -> None:
        await self._client.delete(key)

    async def acquire_lock(
        self, key: str, *, ttl_ms: int, retries: int, retry_delay_ms: int
    ) -> LockHandle:
        """SET NX PX once, then up to `retries` more tries spaced by `retry_delay_ms`."""
        token = uuid.uuid4().hex
        last_error: redis.RedisError | None = None
        for attempt in range(retries + 1):
            if attempt:
                await asyncio.sleep(retry_delay_ms / 1000)
            try:
                if await self._client.set(key, token, nx=True, px=ttl_ms):
                    return LockHandle(key=key, token=token, ttl_ms=ttl_ms, acquired_at=time.monotonic())
            except redis.RedisError as e:
                last_error = e
                logger.debug("lock attempt failed key=%s attempt=%s: %s", key, attempt + 1, e)
        logger.debug("lock not acquired key=%s tries=%s", key, retries + 1)
        raise LockAcquisitionError(key) from last_error

    async def release_lock(self, handle: LockHandle) -> bool:
        """Idempotent; returns True only when this call deleted the lock. Never raises."""
        try:
            deleted = await self._client.eval(RELEASE_LOCK_SCRIPT, 1, handle.key, handle.token)
        except redis.RedisError as e:
            logger.warning("lock release failed key=%s: %s", handle.key, e)
            return False
        return bool(deleted)

    @asynccontextmanager
    async def lock(
        self, key: str, *, ttl_ms: int, retries: int, retry_delay_ms: int
    ) -> AsyncIterator[LockHandle]:
        handle = await self.acquire_lock(
            key, ttl_ms=ttl_ms, retries=retries, retry_delay_ms=retry_delay_ms
        )
        try:
            yield handle
        finally:
            await self.release_lock(handle)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.warning("redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()
