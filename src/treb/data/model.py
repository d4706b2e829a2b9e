"""Cached table rows.

A ``Model`` subclass names a table; each instance is one row keyed by an
integer ``id``. Reads go through the cache (``<table>:<id>``) and fall
back to the read pool; saves go to the write pool and refresh the cache
(write-through), so the next load of the row costs no query.

Usage::

    class Post(Model):
        table = "posts"

    post = await Post.load(services, 42)
    post.set("title", "Hello")
    await post.save()

    draft = Post(services)
    draft.set_all({"title": "New", "body": "..."})
    new_id = await draft.save()

Rows are plain dicts: ``post["title"]`` or ``post.get("title")``.
Values compare loosely when deciding whether a field changed: ``"1"``
and ``1`` are the same value, ``None`` differs from everything but
``None``. A value set with ``raw=True`` is an SQL expression
(``"views + 1"``) and always counts as a change; the row is re-read
after saving it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Self

from treb.cache import HOUR
from treb.data.errors import ModelError

if TYPE_CHECKING:
    from treb.data.database import Database
    from treb.services import Services

CREATED = "created_on"
MODIFIED = "modified_on"
NOW = "CURRENT_TIMESTAMP"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def loosely_equal(old: Any, new: Any) -> bool:
    """Whether *new* leaves a stored *old* value unchanged."""
    if old is None or new is None:
        return old is None and new is None
    if old == new:
        return True
    a, b = _number(old), _number(new)
    if a is not None and b is not None:
        return a == b
    return str(old) == str(new)


class Model:
    """One row of ``table``.

    Subclasses set ``table`` and may override the pools and the cache
    timeout.
    """

    table: ClassVar[str]
    write_pool: ClassVar[str] = "write"
    read_pool: ClassVar[str] = "read"
    timeout: ClassVar[int] = HOUR

    def __init__(self, services: Services, data: Mapping[str, Any] | None = None) -> None:
        self.services = services
        self._data: dict[str, Any] = dict(data or {})
        self._id: int | None = int(self._data["id"]) if self._data.get("id") is not None else None
        self._dirty: set[str] = set()
        self._touched: set[str] = set()
        self._raw: set[str] = set()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not getattr(cls, "table", None) and not cls.__dict__.get("__abstract__", False):
            msg = f"Model {cls.__name__} must define a table name"
            raise TypeError(msg)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self._id!r}>"

    # -- Loading --

    @classmethod
    def cache_key(cls, row_id: int) -> str:
        return f"{cls.table}:{int(row_id)}"

    @classmethod
    def pool(cls) -> str:
        """Pool that sets of this model read from by default."""
        return cls.read_pool

    @classmethod
    async def _read(cls, services: Services, row_id: int, *, write: bool = False) -> dict[str, Any] | None:
        db = await services.db(cls.write_pool if write else cls.read_pool)
        sql = f"SELECT * FROM {quote_identifier(cls.table)} WHERE {quote_identifier('id')} = {db.placeholder(1)}"
        return await db.fetch_row(sql, int(row_id))

    @classmethod
    async def load(cls, services: Services, row_id: int | str) -> Self:
        """Load row *row_id* from the cache, or the read pool on a miss.

        Raises ``ModelError`` when the row does not exist.
        """
        key = cls.cache_key(int(row_id))
        data = await services.cache.get(key)
        if not data:
            data = await cls._read(services, int(row_id))
            if not data:
                raise ModelError("Data nonexistent")
            await services.cache.set(key, data, cls.timeout)
        return cls(services, data)

    @classmethod
    async def load_many(cls, services: Services, ids: Iterable[int | str]) -> list[Self]:
        """Load several rows in order: one cache round trip, then one
        ``IN`` query for whatever the cache missed.

        Raises ``ModelError`` when any row does not exist.
        """
        wanted = [int(i) for i in ids]
        cached = await services.cache.get_many([cls.cache_key(i) for i in wanted])
        rows = {i: cached[cls.cache_key(i)] for i in wanted if cached.get(cls.cache_key(i))}

        missing = list(dict.fromkeys(i for i in wanted if i not in rows))
        if missing:
            db = await services.db(cls.read_pool)
            marks = ", ".join(db.placeholder(n) for n in range(1, len(missing) + 1))
            sql = f"SELECT * FROM {quote_identifier(cls.table)} WHERE {quote_identifier('id')} IN ({marks})"
            for data in await db.fetch_all(sql, *missing):
                row_id = int(data["id"])
                rows[row_id] = data
                await services.cache.set(cls.cache_key(row_id), data, cls.timeout)
            if any(i not in rows for i in missing):
                raise ModelError("Data nonexistent")
        return [cls(services, rows[i]) for i in wanted]

    # -- Field access --

    @property
    def id(self) -> int | None:
        return self._id

    @property
    def key(self) -> str | None:
        return None if self._id is None else self.cache_key(self._id)

    @property
    def data(self) -> dict[str, Any]:
        """A copy of the row."""
        return dict(self._data)

    def __getitem__(self, field: str) -> Any:
        return self._data[field]

    def __contains__(self, field: object) -> bool:
        return field in self._data and self._data[field] is not None

    def get(self, field: str, default: Any = None) -> Any:
        return self._data.get(field, default)

    def set(self, field: str, value: Any, raw: bool = False) -> None:
        """Assign *field*; marks it dirty only when the value changed.

        ``raw=True`` stores *value* as an SQL expression.
        """
        self._touched.add(field)
        if raw or field not in self._data or not loosely_equal(self._data[field], value):
            self._dirty.add(field)
            self._data[field] = value
            if raw:
                self._raw.add(field)
            else:
                self._raw.discard(field)

    def set_all(self, data: Mapping[str, Any], ignore: Iterable[str] = ()) -> None:
        skip = set(ignore)
        for field, value in data.items():
            if field not in skip:
                self.set(field, value)

    def is_dirty(self, field: str) -> bool:
        return field in self._dirty

    # -- Persistence --

    async def save(self) -> int | None:
        """Write dirty fields.

        Returns ``None`` when nothing changed, the rows affected by an
        UPDATE, or the new id after an INSERT.
        """
        if not self._dirty:
            return None

        if self._id is not None:
            if MODIFIED not in self._touched:
                self.set(MODIFIED, self.format_datetime(datetime.now(UTC)))
        else:
            self.set(CREATED, NOW, raw=True)
            self.set(MODIFIED, NOW, raw=True)

        db = await self.services.db(self.write_pool)
        columns: list[str] = []
        expressions: list[str] = []
        params: list[Any] = []
        reload = False
        for field in sorted(self._dirty):
            columns.append(quote_identifier(field))
            if field in self._raw:
                expressions.append(str(self._data[field]))
                reload = True
            else:
                params.append(self._data[field])
                expressions.append(db.placeholder(len(params)))

        self._dirty.clear()
        self._touched.clear()
        self._raw.clear()

        table = quote_identifier(self.table)
        if self._id is not None:
            assignments = ", ".join(f"{c} = {e}" for c, e in zip(columns, expressions, strict=True))
            params.append(self._id)
            sql = f"UPDATE {table} SET {assignments} WHERE {quote_identifier('id')} = {db.placeholder(len(params))}"
            result = await db.execute(sql, *params)
        else:
            sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(expressions)})"
            new_id = await db.insert(sql, *params)
            if new_id is None:
                raise ModelError(f"Insert into {self.table} returned no id")
            self._id = result = int(new_id)
            # Database defaults only show up on a fresh read
            reload = True

        if reload:
            self._data = await self._read(self.services, self._id, write=True) or {}
        await self.services.cache.set(self.cache_key(self._id), self._data, self.timeout)
        return result

    async def delete(self) -> bool:
        """Delete the row. The instance is left empty, as if new."""
        if self._id is None:
            return False
        db = await self.services.db(self.write_pool)
        sql = f"DELETE FROM {quote_identifier(self.table)} WHERE {quote_identifier('id')} = {db.placeholder(1)}"
        deleted = await db.execute(sql, self._id)
        if deleted:
            await self.bust()
            self._clear()
        return bool(deleted)

    async def bust(self) -> None:
        """Drop this row from the cache."""
        if self._id is not None:
            await self.services.cache.delete(self.cache_key(self._id))

    def _clear(self) -> None:
        self._id = None
        self._data = {}
        self._dirty.clear()
        self._touched.clear()
        self._raw.clear()

    # -- Helpers --

    @staticmethod
    def format_date(value: Any, fmt: str = "%Y-%m-%d") -> str:
        """Format a datetime, date, epoch number or date string.

        Naive values are taken as UTC; ``"now"`` is the current time.
        """
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, date):
            moment = datetime(value.year, value.month, value.day, tzinfo=UTC)
        elif isinstance(value, (int, float)) or (isinstance(value, str) and _number(value) is not None):
            moment = datetime.fromtimestamp(float(value), UTC)
        elif isinstance(value, str) and value.strip().lower() == "now":
            moment = datetime.now(UTC)
        elif isinstance(value, str):
            moment = datetime.fromisoformat(value.strip())
        else:
            msg = f"Cannot format {value!r} as a date"
            raise TypeError(msg)
        if moment.tzinfo is not None:
            moment = moment.astimezone(UTC)
        return moment.strftime(fmt)

    @classmethod
    def format_datetime(cls, value: Any) -> str:
        return cls.format_date(value, "%Y-%m-%d %H:%M:%S")

    @classmethod
    async def total(cls, services: Services, since: Any = None, before: Any = None) -> int:
        """Rows created after *since* and before *before* (both optional)."""
        db: Database = await services.db(cls.read_pool)
        clauses: list[str] = []
        params: list[Any] = []
        for op, bound in ((">", since), ("<", before)):
            if bound:
                params.append(cls.format_datetime(bound))
                clauses.append(f"{quote_identifier(CREATED)} {op} {db.placeholder(len(params))}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        count = await db.fetch_val(f"SELECT COUNT(*) FROM {quote_identifier(cls.table)}{where}", *params)
        return int(count or 0)

