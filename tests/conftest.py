import asyncio

import pytest

from worlds_api import metrics
from worlds_api.cache import RedisCacheStorage
from worlds_api.rate_limit import RateLimiter, RateLimiterConfig

START_MS = 1_700_000_000_000


class FakeClock:
    """Controllable millisecond clock shared by the limiter and FakeRedis expiry."""

    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


class FakeRedis:
    """In-memory async stand-in for the Redis commands RedisCacheStorage issues.

    Each command yields to the event loop once so concurrent callers interleave.
    """

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: dict[str, tuple[str, int | None]] = {}

    def _live(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def expires_at(self, key: str) -> int | None:
        self._live(key)
        item = self._data.get(key)
        return item[1] if item else None

    def keys(self) -> list[str]:
        return [k for k in list(self._data) if self._live(k) is not None]

    async def get(self, key: str) -> str | None:
        await asyncio.sleep(0)
        return self._live(key)

    async def set(self, key, value, ex=None, px=None, nx=False):
        await asyncio.sleep(0)
        if nx and self._live(key) is not None:
            return None
        ttl_ms = ex * 1000 if ex is not None else px
        self._data[key] = (value, self._clock() + ttl_ms if ttl_ms is not None else None)
        return True

    async def delete(self, *keys: str) -> int:
        await asyncio.sleep(0)
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def eval(self, script: str, numkeys: int, key: str, token: str) -> int:
        # only the compare-and-delete release script is ever evaluated
        await asyncio.sleep(0)
        if self._live(key) == token:
            del self._data[key]
            return 1
        return 0

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def cache(fake_redis):
    return RedisCacheStorage(fake_redis)


@pytest.fixture
def limiter_config():
    return RateLimiterConfig(lock_retry_delay_ms=1)


@pytest.fixture
def limiter(cache, limiter_config, clock):
    return RateLimiter(cache, limiter_config, clock=clock)
