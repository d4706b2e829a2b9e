"""The collaborators a request needs, passed explicitly.

``Services`` is built once by the ``App`` at startup and handed to every
controller (``self.services``) and every model/result-set call. There
are no module-level singletons: two apps in one process never share a
cache, a pool or a config.

Tests build one directly::

    services = Services(config=AppConfig(), cache=Cache(MemoryBackend()))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from treb.cache import Cache, DisabledCache
from treb.config import AppConfig
from treb.data.pools import DatabasePools
from treb.filter import Filter, Lookups

if TYPE_CHECKING:
    from treb.data.database import Database


class ViewRenderer(Protocol):
    """Turns a view name plus the controller's view data into a body.

    ``data`` holds the controller's ``view_data`` together with its
    page metadata (title, css, js, links, meta).
    """

    def __call__(self, view: str, data: dict[str, Any]) -> str | bytes: ...


def _no_databases() -> DatabasePools:
    return DatabasePools({})


@dataclass(frozen=True, slots=True)
class Services:
    config: AppConfig = field(default_factory=AppConfig)
    cache: Cache = field(default_factory=DisabledCache)
    databases: DatabasePools = field(default_factory=_no_databases)
    lookups: Lookups = field(default_factory=Lookups)
    filter: Filter = field(default_factory=Filter)
    renderer: ViewRenderer | None = None

    async def db(self, pool: str | None = None) -> Database:
        """Connected database for *pool* (falls back to the default pool)."""
        return await self.databases.get(pool)
