"""The cache front the framework talks to.

``Cache`` wraps a backend with a key prefix, a request-local layer and
an advisory lock:

- Reads check the local layer first. The local layer lives in a
  ContextVar opened per request by the server pipeline
  (``with cache.local_scope():``), so a value read twice in one request
  costs one round trip and nothing leaks between requests.
- Writes go to the backend and, on success, to the local layer.
- Backend outages (the exception types the backend lists in ``errors``)
  are logged on the ``cache`` category and reported as misses/failures.

``lock()`` is best-effort: ten ``add`` attempts 100 ms apart. Callers
decide what to do when it returns ``False``.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import anyio

from treb.cache.backends import MISSING, CacheBackend
from treb.log import get_logger

MINUTE = 60
HOUR = 3600
DAY = 86400
WEEK = 604800
YEAR = 31536000
FOREVER = 0

LOCK_ATTEMPTS = 10
LOCK_BACKOFF = 0.1

logger = get_logger("cache")


class Cache:
    """Prefixed cache with a request-local first level."""

    __slots__ = ("_backend", "_local", "prefix")

    def __init__(self, backend: CacheBackend, *, prefix: str = "") -> None:
        self._backend = backend
        self.prefix = prefix
        self._local: ContextVar[dict[str, Any] | None] = ContextVar("treb_cache_local", default=None)

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # -- Local layer --

    @contextmanager
    def local_scope(self) -> Iterator[None]:
        """Open a fresh local layer for the current request/task."""
        token = self._local.set({})
        try:
            yield
        finally:
            self._local.reset(token)

    def clear_local(self) -> None:
        """Forget everything the local layer holds."""
        local = self._local.get()
        if local is not None:
            local.clear()

    def _remember(self, key: str, value: Any) -> None:
        local = self._local.get()
        if local is not None:
            local[key] = value

    def _forget(self, key: str) -> None:
        local = self._local.get()
        if local is not None:
            local.pop(key, None)

    # -- Reads --

    async def get(self, key: str, default: Any = None) -> Any:
        full = self._key(key)
        local = self._local.get()
        if local is not None and full in local:
            return local[full]
        try:
            value = await self._backend.get(full)
        except self._backend.errors:
            logger.error("get failed for %s", full, exc_info=True)
            return default
        if value is MISSING:
            return default
        self._remember(full, value)
        return value

    async def get_many(self, keys: Sequence[str]) -> dict[str, Any]:
        """Fetch several keys; absent keys are left out of the result."""
        found: dict[str, Any] = {}
        wanted: list[str] = []
        local = self._local.get() or {}
        for key in keys:
            full = self._key(key)
            if full in local:
                found[key] = local[full]
            else:
                wanted.append(key)
        if not wanted:
            return found
        try:
            fetched = await self._backend.get_many([self._key(k) for k in wanted])
        except self._backend.errors:
            logger.error("get_many failed for %d keys", len(wanted), exc_info=True)
            return found
        for key in wanted:
            full = self._key(key)
            if full in fetched:
                found[key] = fetched[full]
                self._remember(full, fetched[full])
        return found

    # -- Writes --

    async def _update(self, operation: str, key: str, value: Any, ttl: int) -> bool:
        full = self._key(key)
        try:
            stored = await getattr(self._backend, operation)(full, value, ttl)
        except self._backend.errors:
            logger.error("%s failed for %s", operation, full, exc_info=True)
            return False
        if stored:
            self._remember(full, value)
        return stored

    async def set(self, key: str, value: Any, ttl: int = FOREVER) -> bool:
        return await self._update("set", key, value, ttl)

    async def add(self, key: str, value: Any, ttl: int = FOREVER) -> bool:
        """Store only if *key* is absent."""
        return await self._update("add", key, value, ttl)

    async def replace(self, key: str, value: Any, ttl: int = FOREVER) -> bool:
        """Store only if *key* is present."""
        return await self._update("replace", key, value, ttl)

    async def increment(self, key: str, delta: int = 1) -> int | None:
        """Add *delta* to a stored integer; ``None`` when the key is absent."""
        full = self._key(key)
        try:
            number = await self._backend.incr(full, delta)
        except self._backend.errors:
            logger.error("increment failed for %s", full, exc_info=True)
            return None
        if number is None:
            self._forget(full)
        else:
            self._remember(full, number)
        return number

    async def decrement(self, key: str, delta: int = 1) -> int | None:
        """Subtract *delta*, never going below zero."""
        return await self.increment(key, -delta)

    async def delete(self, key: str) -> bool:
        full = self._key(key)
        self._forget(full)
        try:
            return await self._backend.delete(full)
        except self._backend.errors:
            logger.error("delete failed for %s", full, exc_info=True)
            return False

    # -- Advisory locking --

    async def lock(self, key: str, duration: int = MINUTE) -> bool:
        """Try to take the lock on *key* for *duration* seconds."""
        for attempt in range(LOCK_ATTEMPTS):
            if await self.add(f"{key}:lock", 1, duration):
                return True
            if attempt < LOCK_ATTEMPTS - 1:
                await anyio.sleep(LOCK_BACKOFF)
        logger.info("lock on %s not acquired after %d attempts", key, LOCK_ATTEMPTS)
        return False

    async def unlock(self, key: str) -> bool:
        return await self.delete(f"{key}:lock")

    async def close(self) -> None:
        await self._backend.close()


class DisabledCache(Cache):
    """A cache that stores nothing: reads miss, writes report failure.

    Locks always succeed, so code that serializes work through the cache
    keeps running when caching is turned off.
    """

    __slots__ = ()

    def __init__(self, *, prefix: str = "") -> None:
        from treb.cache.backends import MemoryBackend

        super().__init__(MemoryBackend(), prefix=prefix)

    async def get(self, key: str, default: Any = None) -> Any:
        return default

    async def get_many(self, keys: Sequence[str]) -> dict[str, Any]:
        return {}

    async def _update(self, operation: str, key: str, value: Any, ttl: int) -> bool:
        return False

    async def increment(self, key: str, delta: int = 1) -> int | None:
        return None

    async def delete(self, key: str) -> bool:
        return False

    async def lock(self, key: str, duration: int = MINUTE) -> bool:
        return True

    async def unlock(self, key: str) -> bool:
        return True
