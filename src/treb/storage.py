"""Storage: the mutable key/value record controllers hand to the view.

A plain ``MutableMapping``; values are read and written by key, never
by attribute interception::

    self.data["ip"] = request.client_ip
    self.data.update(title="Home")
"""

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any


class Storage(MutableMapping[str, Any]):
    """Insertion-ordered string-keyed record."""

    __slots__ = ("_data",)

    def __init__(self, initial: Mapping[str, Any] | None = None, /, **values: Any) -> None:
        self._data: dict[str, Any] = {}
        if initial:
            self._data.update(initial)
        self._data.update(values)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Storage({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        """Shallow copy as a plain dict (for JSON output and renderers)."""
        return dict(self._data)
