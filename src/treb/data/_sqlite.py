"""Thread-offloaded SQLite for the async data layer.

``sqlite3`` blocks, so every call on a connection or cursor runs in an
anyio worker thread. The connection is opened with
``check_same_thread=False`` (successive calls may land on different
worker threads) and in autocommit mode; ``Database.transaction()``
switches autocommit off for the duration of a block.

Rows come back as plain tuples; the caller pairs them with
``cursor.columns``.
"""

import sqlite3
from collections.abc import Callable, Sequence
from typing import Any

import anyio


async def _offload(func: Callable[..., Any], *args: Any) -> Any:
    return await anyio.to_thread.run_sync(func, *args)


class SQLiteCursor:
    """A finished statement: column names, counters and its rows."""

    __slots__ = ("_cursor",)

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    @property
    def columns(self) -> list[str]:
        if self._cursor.description is None:
            return []
        return [desc[0] for desc in self._cursor.description]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    @property
    def lastrowid(self) -> int | None:
        return self._cursor.lastrowid

    async def fetchall(self) -> list[tuple[Any, ...]]:
        return await _offload(self._cursor.fetchall)

    async def fetchone(self) -> tuple[Any, ...] | None:
        return await _offload(self._cursor.fetchone)

    async def fetchmany(self, size: int) -> list[tuple[Any, ...]]:
        return await _offload(self._cursor.fetchmany, size)


class SQLiteConnection:
    """One ``sqlite3.Connection`` driven from async code."""

    __slots__ = ("_conn",)

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @property
    def autocommit(self) -> bool:
        return bool(self._conn.autocommit)

    @autocommit.setter
    def autocommit(self, value: bool) -> None:
        self._conn.autocommit = value

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> SQLiteCursor:
        cursor = await _offload(self._conn.execute, sql, tuple(params))
        return SQLiteCursor(cursor)

    async def executemany(self, sql: str, params_seq: Sequence[Sequence[Any]]) -> SQLiteCursor:
        rows = [tuple(params) for params in params_seq]
        cursor = await _offload(self._conn.executemany, sql, rows)
        return SQLiteCursor(cursor)

    async def executescript(self, sql: str) -> None:
        # executescript commits any pending transaction first
        await _offload(self._conn.executescript, sql)

    async def commit(self) -> None:
        await _offload(self._conn.commit)

    async def rollback(self) -> None:
        await _offload(self._conn.rollback)

    async def close(self) -> None:
        await _offload(self._conn.close)


async def connect(path: str, *, timeout: float = 5.0) -> SQLiteConnection:
    """Open *path* (or ``:memory:``) in autocommit mode."""

    def _open() -> sqlite3.Connection:
        return sqlite3.connect(path, timeout=timeout, autocommit=True, check_same_thread=False)

    return SQLiteConnection(await _offload(_open))
