"""Lazy, cached lists of model ids.

A ``ResultSet`` wraps a query that selects ids (first column) for a
model. Nothing runs until the set is used; then the id list is read
from the cache (``Set:<Model>:<md5>``) or the database, and models are
loaded through ``Model.load`` so each row comes from its own cache
entry::

    recent = ResultSet(services, Post, "SELECT id FROM posts ORDER BY id DESC LIMIT 50")
    for post in await recent.slice(0, 10):
        ...
    async for post in recent:
        ...

``timeout=None`` skips the cache entirely.
"""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any

from treb.cache import HOUR
from treb.data.model import Model

if TYPE_CHECKING:
    from treb.services import Services

NOCACHE = None


class ResultSet[M: Model]:
    __slots__ = ("_ids", "key", "model", "params", "pool", "query", "services", "timeout")

    def __init__(
        self,
        services: Services,
        model: type[M],
        query: str,
        params: Sequence[Any] = (),
        *,
        pool: str | None = None,
        timeout: int | None = HOUR,
    ) -> None:
        self.services = services
        self.model = model
        self.query = query
        self.params = tuple(params)
        self.pool = pool or model.pool()
        self.timeout = timeout
        self._ids: list[Any] | None = None

        unique = query if not self.params else "|".join([query, *map(str, self.params)])
        digest = hashlib.md5(unique.encode("utf-8"), usedforsecurity=False).hexdigest()
        self.key = f"Set:{model.__name__}:{digest}"

    def __repr__(self) -> str:
        return f"<ResultSet {self.key}>"

    async def _load(self) -> list[Any]:
        if self._ids is not None:
            return self._ids
        if self.timeout is not NOCACHE:
            cached = await self.services.cache.get(self.key)
            if cached is not None:
                self._ids = list(cached)
                return self._ids

        db = await self.services.db(self.pool)
        self._ids = await db.fetch_column(self.query, *self.params)
        if self.timeout is not NOCACHE:
            await self.services.cache.set(self.key, self._ids, self.timeout)
        return self._ids

    async def ids(self) -> list[Any]:
        return list(await self._load())

    async def all(self) -> list[M]:
        return await self.model.load_many(self.services, await self._load())

    async def slice(self, offset: int, length: int | None = None) -> list[M]:
        ids = await self._load()
        end = None if length is None else offset + length
        return await self.model.load_many(self.services, ids[offset:end])

    async def shard(self, comparison: int, divisor: int) -> list[M]:
        """Models whose ``id % divisor == comparison``."""
        ids = await self._load()
        return await self.model.load_many(self.services, [i for i in ids if int(i) % divisor == comparison])

    async def count(self) -> int:
        return len(await self._load())

    async def get(self, offset: int) -> M | None:
        """The model at position *offset*, or ``None`` past either end."""
        ids = await self._load()
        if not 0 <= offset < len(ids):
            return None
        return await self.model.load(self.services, ids[offset])

    async def bust(self) -> bool:
        """Drop the cached id list (the next use re-queries)."""
        self._ids = None
        return await self.services.cache.delete(self.key)

    async def result(self) -> list[dict[str, Any]]:
        """Run the query now and return its rows, bypassing the cache."""
        db = await self.services.db(self.pool)
        return await db.fetch_all(self.query, *self.params)

    async def __aiter__(self) -> AsyncIterator[M]:
        for row_id in await self._load():
            yield await self.model.load(self.services, row_id)
