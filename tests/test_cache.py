"""Tests for treb.cache — backends, the local layer, and locking."""

import logging
from typing import Any

import pytest

from treb.cache import (
    HOUR,
    MISSING,
    Cache,
    DisabledCache,
    MemoryBackend,
    build_cache,
)
from treb.config import CacheConfig
from treb.errors import ConfigurationError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend(MemoryBackend):
    """Every operation fails like an unreachable server."""

    errors = (ConnectionError,)

    async def get(self, key: str) -> Any:
        raise ConnectionError("down")

    async def get_many(self, keys):
        raise ConnectionError("down")

    async def set(self, key, value, ttl):
        raise ConnectionError("down")

    async def incr(self, key, delta):
        raise ConnectionError("down")

    async def delete(self, key):
        raise ConnectionError("down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> Cache:
    return Cache(MemoryBackend(clock=clock), prefix="t:")


# =============================================================================
# MemoryBackend
# =============================================================================


class TestMemoryBackend:
    async def test_expiry(self, clock: FakeClock) -> None:
        backend = MemoryBackend(clock=clock)
        await backend.set("a", 1, 10)
        assert await backend.get("a") == 1
        clock.now += 10
        assert await backend.get("a") is MISSING

    async def test_zero_ttl_never_expires(self, clock: FakeClock) -> None:
        backend = MemoryBackend(clock=clock)
        await backend.set("a", 1, 0)
        clock.now += 10**9
        assert await backend.get("a") == 1

    async def test_values_are_copied(self) -> None:
        backend = MemoryBackend()
        value = {"list": [1]}
        await backend.set("a", value, 0)
        value["list"].append(2)
        fetched = await backend.get("a")
        fetched["list"].append(3)
        assert await backend.get("a") == {"list": [1]}

    async def test_incr_floors_at_zero(self) -> None:
        backend = MemoryBackend()
        await backend.set("n", 2, 0)
        assert await backend.incr("n", -5) == 0
        assert await backend.incr("missing", 1) is None


# =============================================================================
# Cache
# =============================================================================


class TestCache:
    async def test_prefix(self, cache: Cache) -> None:
        await cache.set("a", "x")
        assert await cache.backend.get("t:a") == "x"

    async def test_get_default(self, cache: Cache) -> None:
        assert await cache.get("nope") is None
        assert await cache.get("nope", default=5) == 5

    async def test_add_and_replace(self, cache: Cache) -> None:
        assert not await cache.replace("a", 1)
        assert await cache.add("a", 1)
        assert not await cache.add("a", 2)
        assert await cache.replace("a", 3)
        assert await cache.get("a") == 3

    async def test_ttl(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set("a", 1, ttl=HOUR)
        clock.now += HOUR
        assert await cache.get("a") is None

    async def test_increment_and_decrement(self, cache: Cache) -> None:
        assert await cache.increment("hits") is None
        await cache.set("hits", 5)
        assert await cache.increment("hits", 2) == 7
        assert await cache.decrement("hits", 10) == 0

    async def test_get_many_leaves_out_missing(self, cache: Cache) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        assert await cache.get_many(["a", "b", "c"]) == {"a": 1, "b": 2}

    async def test_delete(self, cache: Cache) -> None:
        await cache.set("a", 1)
        assert await cache.delete("a")
        assert not await cache.delete("a")
        assert await cache.get("a") is None


class TestLocalLayer:
    async def test_second_read_served_locally(self, cache: Cache) -> None:
        await cache.set("a", 1)
        with cache.local_scope():
            assert await cache.get("a") == 1
            await cache.backend.delete("t:a")
            assert await cache.get("a") == 1
            assert await cache.get_many(["a"]) == {"a": 1}
        assert await cache.get("a") is None

    async def test_writes_fill_local_layer(self, cache: Cache) -> None:
        with cache.local_scope():
            await cache.set("a", 1)
            await cache.backend.delete("t:a")
            assert await cache.get("a") == 1

    async def test_delete_forgets_locally(self, cache: Cache) -> None:
        with cache.local_scope():
            await cache.set("a", 1)
            await cache.delete("a")
            assert await cache.get("a") is None

    async def test_clear_local(self, cache: Cache) -> None:
        with cache.local_scope():
            await cache.set("a", 1)
            await cache.backend.delete("t:a")
            cache.clear_local()
            assert await cache.get("a") is None

    async def test_no_scope_no_memory(self, cache: Cache) -> None:
        await cache.set("a", 1)
        await cache.backend.delete("t:a")
        assert await cache.get("a") is None


class TestLocking:
    async def test_lock_and_unlock(self, cache: Cache, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("treb.cache.connection.LOCK_BACKOFF", 0)
        assert await cache.lock("job")
        assert not await cache.lock("job")
        assert await cache.unlock("job")
        assert await cache.lock("job")

    async def test_lock_expires(self, cache: Cache, clock: FakeClock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("treb.cache.connection.LOCK_BACKOFF", 0)
        assert await cache.lock("job", duration=5)
        clock.now += 5
        assert await cache.lock("job")


class TestBackendFailures:
    async def test_reported_as_misses(self, caplog: pytest.LogCaptureFixture) -> None:
        cache = Cache(BrokenBackend())
        with caplog.at_level(logging.ERROR, logger="treb.cache"):
            assert await cache.get("a", default="d") == "d"
            assert await cache.get_many(["a"]) == {}
            assert not await cache.set("a", 1)
            assert await cache.increment("a") is None
            assert not await cache.delete("a")
        assert len([r for r in caplog.records if r.name == "treb.cache"]) == 5


class TestDisabledCache:
    async def test_stores_nothing(self) -> None:
        cache = DisabledCache()
        assert not await cache.set("a", 1)
        assert await cache.get("a", default=0) == 0
        assert await cache.get_many(["a"]) == {}
        assert await cache.increment("a") is None
        assert not await cache.delete("a")

    async def test_locks_always_succeed(self) -> None:
        cache = DisabledCache()
        assert await cache.lock("job")
        assert await cache.lock("job")
        assert await cache.unlock("job")


class TestBuildCache:
    def test_memory(self) -> None:
        cache = build_cache(CacheConfig(prefix="p:"))
        assert isinstance(cache.backend, MemoryBackend)
        assert cache.prefix == "p:"

    def test_disabled(self) -> None:
        assert isinstance(build_cache(CacheConfig(disable=True)), DisabledCache)

    def test_unsupported(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported cache url"):
            build_cache(CacheConfig(url="memcached://localhost"))

    def test_redis(self) -> None:
        pytest.importorskip("redis")
        from treb.cache import RedisBackend

        cache = build_cache(CacheConfig(url="redis://localhost:6379/0"))
        assert isinstance(cache.backend, RedisBackend)
