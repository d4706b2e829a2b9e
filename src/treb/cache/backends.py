"""Cache storage backends.

A backend stores already-prefixed keys and knows nothing about locking
or the per-request local layer; ``treb.cache.Cache`` adds those.

``MemoryBackend`` keeps everything in process (tests, single-process
deployments). ``RedisBackend`` talks to redis through
``redis.asyncio`` (``pip install treb[redis]``); a ready client can be
injected instead of a URL.
"""

import copy
import pickle
import time
from collections.abc import Sequence
from typing import Any, Protocol

from treb.errors import ConfigurationError


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Returned by ``CacheBackend.get`` when a key is absent or expired."""


class CacheBackend(Protocol):
    """Storage operations every backend provides.

    ``ttl`` is in seconds; 0 means no expiry. ``errors`` lists the
    exception types that signal an unreachable store (reported as misses
    by ``Cache``).
    """

    errors: tuple[type[BaseException], ...]

    async def get(self, key: str) -> Any: ...
    async def get_many(self, keys: Sequence[str]) -> dict[str, Any]: ...
    async def set(self, key: str, value: Any, ttl: int) -> bool: ...
    async def add(self, key: str, value: Any, ttl: int) -> bool: ...
    async def replace(self, key: str, value: Any, ttl: int) -> bool: ...
    async def incr(self, key: str, delta: int) -> int | None: ...
    async def delete(self, key: str) -> bool: ...
    async def close(self) -> None: ...


class MemoryBackend:
    """In-process backend with per-key expiry.

    Values are deep-copied on the way in and out, so callers cannot
    mutate a cached value by accident.
    """

    errors: tuple[type[BaseException], ...] = ()

    __slots__ = ("_clock", "_data")

    def __init__(self, *, clock: Any = time.monotonic) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock

    def _live(self, key: str) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return MISSING
        value, expires = entry
        if expires is not None and expires <= self._clock():
            del self._data[key]
            return MISSING
        return value

    def _put(self, key: str, value: Any, ttl: int) -> None:
        expires = self._clock() + ttl if ttl > 0 else None
        self._data[key] = (copy.deepcopy(value), expires)

    async def get(self, key: str) -> Any:
        value = self._live(key)
        return value if value is MISSING else copy.deepcopy(value)

    async def get_many(self, keys: Sequence[str]) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for key in keys:
            value = self._live(key)
            if value is not MISSING:
                found[key] = copy.deepcopy(value)
        return found

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        self._put(key, value, ttl)
        return True

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        if self._live(key) is not MISSING:
            return False
        self._put(key, value, ttl)
        return True

    async def replace(self, key: str, value: Any, ttl: int) -> bool:
        if self._live(key) is MISSING:
            return False
        self._put(key, value, ttl)
        return True

    async def incr(self, key: str, delta: int) -> int | None:
        current = self._live(key)
        if current is MISSING:
            return None
        try:
            number = max(int(current) + delta, 0)
        except (TypeError, ValueError):
            return None
        _, expires = self._data[key]
        self._data[key] = (number, expires)
        return number

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def close(self) -> None:
        self._data.clear()


def _encode(value: Any) -> bytes:
    # Plain integers stay readable to INCRBY
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value).encode("ascii")
    return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)


def _decode(raw: bytes) -> Any:
    if raw.lstrip(b"-").isdigit():
        return int(raw)
    return pickle.loads(raw)  # noqa: S301


class RedisBackend:
    """Redis backend using ``redis.asyncio``.

    Usage::

        backend = RedisBackend("redis://localhost:6379/0")
        # or with an existing client
        backend = RedisBackend(client=my_redis)
    """

    __slots__ = ("_client", "errors")

    def __init__(self, url: str | None = None, *, client: Any = None) -> None:
        try:
            import redis.asyncio as redis_asyncio
            from redis.exceptions import RedisError
        except ImportError:
            msg = (
                "RedisBackend requires the 'redis' package. "
                "Install it with: pip install treb[redis]"
            )
            raise ConfigurationError(msg) from None

        if client is None:
            if not url:
                msg = "RedisBackend needs a url or a client"
                raise ConfigurationError(msg)
            client = redis_asyncio.from_url(url)
        self._client = client
        self.errors: tuple[type[BaseException], ...] = (RedisError, OSError)

    async def get(self, key: str) -> Any:
        raw = await self._client.get(key)
        if raw is None:
            return MISSING
        return _decode(raw)

    async def get_many(self, keys: Sequence[str]) -> dict[str, Any]:
        if not keys:
            return {}
        values = await self._client.mget(list(keys))
        return {key: _decode(raw) for key, raw in zip(keys, values, strict=True) if raw is not None}

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        return bool(await self._client.set(key, _encode(value), ex=ttl or None))

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        return bool(await self._client.set(key, _encode(value), ex=ttl or None, nx=True))

    async def replace(self, key: str, value: Any, ttl: int) -> bool:
        return bool(await self._client.set(key, _encode(value), ex=ttl or None, xx=True))

    async def incr(self, key: str, delta: int) -> int | None:
        if not await self._client.exists(key):
            return None
        number = await self._client.incrby(key, delta)
        if number < 0:
            await self._client.set(key, b"0", keepttl=True)
            return 0
        return number

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def close(self) -> None:
        await self._client.aclose()
