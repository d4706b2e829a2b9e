"""Named lookup tables for the ``data:`` filter type.

A schema entry ``data:keys:colors`` accepts only keys of the ``colors``
table; ``data:array:colors`` accepts only its values. Tables are handed
to the ``Filter`` explicitly, usually from ``App(lookups=...)``::

    Lookups({"example_types": {0: "Red", 2: "White", 4: "Blue"}})
"""

from collections.abc import Iterator, Mapping
from typing import Any

from treb.errors import ConfigurationError


class Lookups(Mapping[str, Mapping[Any, Any]]):
    """Read-only registry of lookup tables by name."""

    __slots__ = ("_tables",)

    def __init__(self, tables: Mapping[str, Mapping[Any, Any]] | None = None) -> None:
        self._tables: dict[str, Mapping[Any, Any]] = dict(tables or {})

    def __getitem__(self, name: str) -> Mapping[Any, Any]:
        return self._tables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def table(self, name: str) -> Mapping[Any, Any]:
        """Return the table called *name*.

        An unknown name is a programming error in the schema, not bad
        input, so it raises ``ConfigurationError``.
        """
        try:
            return self._tables[name]
        except KeyError:
            msg = f"Unknown lookup table {name!r}. Known tables: {', '.join(sorted(self._tables))}"
            raise ConfigurationError(msg) from None
