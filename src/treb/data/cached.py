"""Single-row query results kept in the cache."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from treb.cache import HOUR

if TYPE_CHECKING:
    from treb.services import Services


def row_key(sql: str, params: Sequence[Any] = ()) -> str:
    unique = f"{sql}|{','.join(map(str, params))}" if params else sql
    return "cachedRow|" + hashlib.md5(unique.encode("utf-8"), usedforsecurity=False).hexdigest()


async def cached_row(
    services: Services,
    sql: str,
    params: Sequence[Any] = (),
    *,
    key: str | None = None,
    timeout: int = HOUR,
    force: bool = False,
    pool: str | None = None,
) -> dict[str, Any] | None:
    """First row of *sql*, served from the cache when possible.

    ``force`` skips the cache read (the fresh row is still stored). A
    missing row is not cached, so a row inserted later is found on the
    next call.
    """
    key = key or row_key(sql, params)
    row = None if force else await services.cache.get(key)
    if not row:
        db = await services.db(pool)
        row = await db.fetch_row(sql, *params)
        if row:
            await services.cache.set(key, row, timeout)
    return row or None
