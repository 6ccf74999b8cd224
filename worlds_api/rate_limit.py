"""Failed shared-secret attempt limiter: sliding window per (world, subject), shared across instances via Redis.

Every instance reads and writes the same Redis keys; the read-modify-write of a window is
serialized by a Redis lock, not by any in-process mutex. On coordination or store failure
the limiter fails open (the attempt is allowed and may go untracked).
"""
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis

from worlds_api import metrics
from worlds_api.cache import LockHandle, RedisCacheStorage
from worlds_api.errors import LockAcquisitionError
from worlds_api.settings import Settings

logger = logging.getLogger("worlds.ratelimit")

DEFAULT_MAX_ATTEMPTS_PER_MINUTE = 3
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_TTL_SECONDS = 70  # slightly longer than the window so abandoned records expire on their own
LOCK_TTL_MS = 5000
LOCK_RETRIES = 3
LOCK_RETRY_DELAY_MS = 100
ATTEMPTS_KEY_PREFIX = "shared-secret:attempts"
LOCK_KEY_PREFIX = "shared-secret:attempts:lock"

Clock = Callable[[], int]


def system_clock() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimiterConfig:
    max_attempts_per_window: int = DEFAULT_MAX_ATTEMPTS_PER_MINUTE
    window_seconds: int = RATE_LIMIT_WINDOW_SECONDS
    record_ttl_seconds: int = RATE_LIMIT_TTL_SECONDS
    lock_ttl_ms: int = LOCK_TTL_MS
    lock_retries: int = LOCK_RETRIES
    lock_retry_delay_ms: int = LOCK_RETRY_DELAY_MS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiterConfig":
        return cls(max_attempts_per_window=settings.SHARED_SECRET_MAX_ATTEMPTS_PER_MINUTE)


@dataclass(frozen=True)
class RateLimitResult:
    rate_limited: bool


def _key_suffix(world_name: str, subject: str) -> str:
    return f"{world_name.lower()}:{subject.lower()}"


def build_attempts_key(world_name: str, subject: str) -> str:
    return f"{ATTEMPTS_KEY_PREFIX}:{_key_suffix(world_name, subject)}"


def build_lock_key(world_name: str, subject: str) -> str:
    return f"{LOCK_KEY_PREFIX}:{_key_suffix(world_name, subject)}"


def prune_attempts(attempts: list[Any], now_ms: int, window_seconds: int) -> list[int]:
    """Keep timestamps newer than now - window; anything that is not a finite number is dropped.

    Timestamps slightly ahead of `now` are kept: other instances' clocks may run ahead.
    """
    window_start = now_ms - window_seconds * 1000
    return [
        int(ts)
        for ts in attempts
        if isinstance(ts, (int, float)) and not isinstance(ts, bool) and math.isfinite(ts) and ts > window_start
    ]


def _stored_attempts(stored: Any) -> list[Any]:
    if isinstance(stored, dict) and isinstance(stored.get("attempts"), list):
        return stored["attempts"]
    return []


class RateLimiter:
    def __init__(
        self,
        cache: RedisCacheStorage,
        config: RateLimiterConfig | None = None,
        clock: Clock = system_clock,
    ):
        self.cache = cache
        self.config = config or RateLimiterConfig()
        self._clock = clock

    @classmethod
    def from_settings(cls, cache: RedisCacheStorage, settings: Settings) -> "RateLimiter":
        return cls(cache, RateLimiterConfig.from_settings(settings))

    async def is_rate_limited(self, world_name: str, subject: str) -> bool:
        """Read-only check; takes no lock, so a concurrent writer may not be visible yet."""
        attempts_key = build_attempts_key(world_name, subject)
        try:
            stored = await self.cache.get(attempts_key)
            recent = prune_attempts(_stored_attempts(stored), self._clock(), self.config.window_seconds)
        except Exception as e:
            logger.warning("rate limit check failed key=%s, allowing: %s", attempts_key, e)
            return False
        return len(recent) >= self.config.max_attempts_per_window

    async def record_failed_attempt(self, world_name: str, subject: str) -> RateLimitResult:
        """
        Record one failed attempt unless the subject is already at the cap.
        Returns rate_limited=True when the cap was already reached (nothing is appended then).
        """
        attempts_key = build_attempts_key(world_name, subject)
        lock_key = build_lock_key(world_name, subject)
        cfg = self.config
        try:
            async with self.cache.lock(
                lock_key,
                ttl_ms=cfg.lock_ttl_ms,
                retries=cfg.lock_retries,
                retry_delay_ms=cfg.lock_retry_delay_ms,
            ) as handle:
                return await self._check_and_record(attempts_key, handle)
        except LockAcquisitionError as e:
            logger.warning("attempt not tracked key=%s reason=lock_unavailable: %s", attempts_key, e)
        except Exception as e:
            logger.warning("attempt not tracked key=%s reason=error: %s", attempts_key, e)
        metrics.record_attempt_outcome("fail_open")
        return RateLimitResult(rate_limited=False)

    async def _check_and_record(self, attempts_key: str, handle: LockHandle) -> RateLimitResult:
        cfg = self.config
        now = self._clock()
        try:
            stored = await self.cache.get(attempts_key)
        except (redis.RedisError, ValueError) as e:
            logger.warning("attempts read failed key=%s, treating as empty: %s", attempts_key, e)
            stored = None

        recent = prune_attempts(_stored_attempts(stored), now, cfg.window_seconds)
        if len(recent) >= cfg.max_attempts_per_window:
            logger.info("rate limited key=%s attempts=%s", attempts_key, len(recent))
            metrics.record_attempt_outcome("rate_limited")
            return RateLimitResult(rate_limited=True)

        if handle.expired():
            logger.warning("lock expired before write key=%s, attempt not tracked", attempts_key)
            metrics.record_attempt_outcome("fail_open")
            return RateLimitResult(rate_limited=False)

        recent.append(now)
        try:
            await self.cache.set(attempts_key, {"attempts": recent}, cfg.record_ttl_seconds)
        except redis.RedisError as e:
            logger.warning("attempts write failed key=%s, attempt not tracked: %s", attempts_key, e)
            metrics.record_attempt_outcome("fail_open")
            return RateLimitResult(rate_limited=False)
        metrics.record_attempt_outcome("allowed")
        return RateLimitResult(rate_limited=False)

    async def clear_attempts(self, world_name: str, subject: str) -> None:
        """Drop the window outright; no lock, a racing writer at worst re-adds one attempt."""
        attempts_key = build_attempts_key(world_name, subject)
        try:
            await self.cache.remove(attempts_key)
        except redis.RedisError as e:
            logger.warning("clear attempts failed key=%s: %s", attempts_key, e)
            return
        metrics.record_attempt_outcome("cleared")
