"""Named database pools.

A pool is a list of interchangeable servers (replicas behind a "read"
pool, the primary behind "write", ...). The first time a pool is asked
for, its servers are tried in random order until one connects; that
``Database`` then serves every later ``get()`` for the pool.

Unknown or empty pool names fall back to the configured default pool,
so code can always ask for the pool it would like and run against a
single-server setup unchanged.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence

import anyio

from treb.config import DatabaseConfig
from treb.data.database import Database, _redact
from treb.data.errors import ConnectionError, DriverNotInstalledError
from treb.log import ERROR, FATAL, write


class DatabasePools:
    """Lazily connected ``Database`` per pool name."""

    __slots__ = ("_connected", "_lock", "_rng", "default", "echo", "pool_size", "pools")

    def __init__(
        self,
        pools: Mapping[str, Sequence[str]],
        default: str = "default",
        *,
        pool_size: int = 5,
        echo: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.pools = {name: tuple(servers) for name, servers in pools.items()}
        self.default = default
        self.pool_size = pool_size
        self.echo = echo
        self._rng = rng or random.Random()
        self._connected: dict[str, Database] = {}
        self._lock: anyio.Lock | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> DatabasePools:
        return cls(config.pools, config.default, pool_size=config.pool_size, echo=config.echo)

    def resolve(self, name: str | None) -> str:
        """The pool that serves *name*."""
        if not name or name not in self.pools:
            return self.default
        return name

    async def get(self, name: str | None = None) -> Database:
        """Connected database for pool *name*.

        Raises ``ConnectionError`` when no server in the pool connects.
        """
        pool = self.resolve(name)
        db = self._connected.get(pool)
        if db is not None:
            return db

        if self._lock is None:
            self._lock = anyio.Lock()
        async with self._lock:
            db = self._connected.get(pool)
            if db is None:
                db = await self._connect(pool)
                self._connected[pool] = db
        return db

    async def _connect(self, pool: str) -> Database:
        servers = list(self.pools.get(pool, ()))
        self._rng.shuffle(servers)
        for url in servers:
            db = Database(url, pool_size=self.pool_size, echo=self.echo)
            try:
                await db.connect()
            except DriverNotInstalledError:
                raise
            except Exception as exc:
                write("database", (pool, _redact(url), type(exc).__name__, exc), ERROR)
                continue
            return db

        write("database", ("ALL CONNECTIONS FAILED", pool), FATAL)
        msg = f"Unable to connect to any {pool} database!"
        raise ConnectionError(msg)

    async def close(self) -> None:
        """Disconnect every pool opened so far."""
        connected, self._connected = self._connected, {}
        for db in connected.values():
            await db.disconnect()
