"""Caching for treb.

``Cache`` fronts a storage backend with a key prefix, a request-local
first level and advisory locks. ``build_cache()`` turns the ``cache``
config section into the right instance::

    cache = build_cache(CacheConfig(url="redis://localhost:6379/0", prefix="site:"))

    async with ...:
        with cache.local_scope():
            await cache.set("greeting", "hello", ttl=HOUR)
            await cache.get("greeting")
"""

from treb.cache.backends import MISSING, CacheBackend, MemoryBackend, RedisBackend
from treb.cache.connection import (
    DAY,
    FOREVER,
    HOUR,
    MINUTE,
    WEEK,
    YEAR,
    Cache,
    DisabledCache,
)
from treb.config import CacheConfig


def build_cache(config: CacheConfig) -> Cache:
    """Create the cache described by *config*.

    A disabled cache stores nothing. An empty ``url`` keeps data in
    process; ``redis://`` and ``rediss://`` URLs use redis.
    """
    if config.disable:
        return DisabledCache(prefix=config.prefix)
    if config.url.startswith(("redis://", "rediss://", "unix://")):
        return Cache(RedisBackend(config.url), prefix=config.prefix)
    if config.url in ("", "memory://"):
        return Cache(MemoryBackend(), prefix=config.prefix)
    from treb.errors import ConfigurationError

    msg = f"Unsupported cache url: {config.url!r}"
    raise ConfigurationError(msg)


__all__ = [
    "DAY",
    "FOREVER",
    "HOUR",
    "MINUTE",
    "MISSING",
    "WEEK",
    "YEAR",
    "Cache",
    "CacheBackend",
    "DisabledCache",
    "MemoryBackend",
    "RedisBackend",
    "build_cache",
]
