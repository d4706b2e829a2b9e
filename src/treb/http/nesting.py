"""Bracket-key nesting for form and query input.

HTML forms address structured data with bracketed names::

    ids[]=1&ids[]=2              -> {"ids": ["1", "2"]}
    work[3][name]=Bob            -> {"work": {"3": {"name": "Bob"}}}
    rows[][x]=1&rows[][x]=2      -> {"rows": [{"x": "1"}, {"x": "2"}]}

``nest()`` folds flat ``(name, value)`` pairs into that shape so schema
rules such as ``{"_keys": "integer", "_values": {...}}`` can address
them. Names that are not well-formed bracket paths are kept verbatim.
Later pairs win over earlier ones for the same scalar key.
"""

import re
from collections.abc import Iterable
from typing import Any

_NAME_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_PART_RE = re.compile(r"\[([^\[\]]*)\]")
# Keys that count as list positions when appending with "[]"
_INDEX_RE = re.compile(r"[0-9]{1,18}")


def nest(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Fold flat name/value pairs into nested dicts and lists."""
    result: dict[str, Any] = {}
    for name, value in pairs:
        match = _NAME_RE.match(name)
        if match is None:
            result[name] = value
            continue
        path = [match.group(1), *_PART_RE.findall(match.group(2))]
        _assign(result, path, value)
    return result


def _assign(container: dict[str, Any] | list[Any], path: list[str], value: Any) -> None:
    key, rest = path[0], path[1:]
    if not rest:
        _store(container, key, value)
        return

    child = container.get(key) if isinstance(container, dict) else None
    if not isinstance(child, (dict, list)):
        child = _store(container, key, [] if rest[0] == "" else {})
    elif isinstance(child, list) and rest[0] != "":
        # A named key arriving after appends turns the list into a dict
        child = _store(container, key, {str(i): v for i, v in enumerate(child)})
    _assign(child, rest, value)


def _store(container: dict[str, Any] | list[Any], key: str, value: Any) -> Any:
    if isinstance(container, list):
        container.append(value)
    elif key == "":
        numeric = [int(k) for k in container if _INDEX_RE.fullmatch(k)]
        container[str(max(numeric) + 1 if numeric else 0)] = value
    else:
        container[key] = value
    return value
