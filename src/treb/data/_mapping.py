"""Row mapping for the data layer.

Drivers hand back column names plus value tuples (sqlite) or records
(asyncpg). Everything above the driver functions sees plain dicts;
``map_row``/``map_rows`` turn those into dataclasses when a caller asks
for typed rows.

Coercion covers the usual driver mismatches: ``int``/``float`` fields
accept numeric strings (empty string -> 0), ``bool`` fields accept
``0``/``1`` and ``"0"``/``"1"``.
"""

import dataclasses
import functools
import types
from collections.abc import Iterable, Sequence
from typing import Any, get_args, get_origin, get_type_hints

_COERCE: dict[type, Any] = {
    int: lambda v: int(v) if v != "" else 0,
    float: lambda v: float(v) if v != "" else 0.0,
    bool: lambda v: bool(int(v)) if isinstance(v, str) else bool(v),
    str: str,
}


def as_dict(columns: Sequence[str], values: Iterable[Any]) -> dict[str, Any]:
    return dict(zip(columns, values, strict=True))


@functools.cache
def _targets(cls: type) -> dict[str, type | None]:
    """``{field: coercion target}``, ``None`` where no coercion applies."""
    if not dataclasses.is_dataclass(cls):
        msg = f"{cls.__name__} is not a dataclass; typed fetches need a dataclass"
        raise TypeError(msg)
    hints = get_type_hints(cls)
    targets: dict[str, type | None] = {}
    for f in dataclasses.fields(cls):
        annotation = hints.get(f.name, f.type)
        if get_origin(annotation) is types.UnionType:
            args = [a for a in get_args(annotation) if a is not type(None)]
            annotation = args[0] if len(args) == 1 else None
        targets[f.name] = annotation if annotation in _COERCE else None
    return targets


def _coerce(value: Any, target: type | None) -> Any:
    if target is None or value is None or isinstance(value, target):
        return value
    return _COERCE[target](value)


def map_row[T](cls: type[T], row: dict[str, Any]) -> T:
    """Build a *cls* instance from *row*; columns without a field are ignored.

    Raises ``TypeError`` when a required field has no column.
    """
    targets = _targets(cls)
    return cls(**{k: _coerce(v, targets[k]) for k, v in row.items() if k in targets})


def map_rows[T](cls: type[T], rows: Iterable[dict[str, Any]]) -> list[T]:
    return [map_row(cls, row) for row in rows]
