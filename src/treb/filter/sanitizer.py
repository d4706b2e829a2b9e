"""The recursive sanitizer.

``Filter.sanitize(data, schema)`` walks a compiled rule tree alongside
untrusted input and builds a fresh output structure:

- every field a schema declares is present in the output, missing input
  being cleaned as ``None`` so defaults and enum fallbacks still apply;
- nothing the schema does not declare is copied over;
- input of the wrong shape (a string where a mapping was declared) is
  treated as empty, never as an error.

``_values`` arrays re-index their elements into a list; with ``_keys``
they keep the key/value association, keys cleaned by the key rule.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from treb.filter.lookups import Lookups
from treb.filter.schema import (
    SOURCES,
    ArrayRule,
    FieldsRule,
    Rule,
    ScalarRule,
    compile_schema,
)


def lookup(container: Any, key: Any) -> Any:
    """Fetch *key* from a mapping or sequence, or ``None``.

    Integer keys and digit-string keys are interchangeable, so a schema
    can address ``extra`` path segments or form arrays by position.
    """
    if isinstance(container, Mapping):
        if key in container:
            return container[key]
        if isinstance(key, int) and not isinstance(key, bool):
            return container.get(str(key))
        if isinstance(key, str) and key.isdigit():
            return container.get(int(key))
        return None
    if isinstance(container, Sequence) and not isinstance(container, (str, bytes)):
        if isinstance(key, str) and key.isdigit():
            key = int(key)
        if isinstance(key, int) and not isinstance(key, bool) and 0 <= key < len(container):
            return container[key]
    return None


def items(container: Any) -> list[tuple[Any, Any]]:
    """Key/value pairs of a mapping or sequence; anything else is empty."""
    if isinstance(container, Mapping):
        return list(container.items())
    if isinstance(container, Sequence) and not isinstance(container, (str, bytes)):
        return list(enumerate(container))
    return []


class Filter:
    """Sanitizer bound to a set of lookup tables.

    Usage::

        f = Filter(Lookups({"colors": {1: "red", 2: "blue"}}))
        f.sanitize({"age": "42x", "color": "9"}, {"age": "integer", "color": "data:keys:colors"})
        # {"age": 42, "color": 1}
    """

    __slots__ = ("lookups",)

    def __init__(self, lookups: Lookups | Mapping[str, Mapping[Any, Any]] | None = None) -> None:
        if not isinstance(lookups, Lookups):
            lookups = Lookups(lookups)
        self.lookups = lookups

    def sanitize(self, data: Any, schema: Any) -> Any:
        """Clean *data* against *schema* (a rule or raw schema)."""
        return self.apply(compile_schema(schema), data)

    def apply(self, rule: Rule, value: Any) -> Any:
        if isinstance(rule, ScalarRule):
            return rule.assertion.coerce(value, rule.options, self.lookups)
        if isinstance(rule, FieldsRule):
            return {key: self.apply(sub, lookup(value, key)) for key, sub in rule.fields}
        return self._apply_array(rule, value)

    def _apply_array(self, rule: ArrayRule, value: Any) -> Any:
        pairs = items(value)
        if rule.keys is None:
            return [self.apply(rule.values, element) for _, element in pairs]
        return {self.apply(rule.keys, key): self.apply(rule.values, element) for key, element in pairs}

    def sanitize_sources(
        self,
        sources: Mapping[str, Any],
        expectations: Mapping[str, Rule],
    ) -> SanitizedArgs:
        """Clean every declared source; undeclared sources stay empty."""
        cleaned = {
            source: self.apply(rule, sources.get(source)) for source, rule in expectations.items()
        }
        return SanitizedArgs(**cleaned)


@dataclass(frozen=True, slots=True)
class SanitizedArgs:
    """Cleaned request input, one mapping per source.

    The record itself is fixed once built; ``add()`` exists for values a
    controller derives later and wants to keep next to the input.
    """

    post: Any = field(default_factory=dict)
    get: Any = field(default_factory=dict)
    cookie: Any = field(default_factory=dict)
    env: Any = field(default_factory=dict)
    server: Any = field(default_factory=dict)
    extra: Any = field(default_factory=dict)

    def source(self, name: str) -> Any:
        if name not in SOURCES:
            msg = f"Unknown input source {name!r}"
            raise KeyError(msg)
        return getattr(self, name)

    def add(self, source: str, key: Any, value: Any) -> None:
        """Store a programmatically derived value under *source*."""
        container = self.source(source)
        if isinstance(container, list):
            container.append(value)
        else:
            container[key] = value
