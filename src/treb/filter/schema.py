"""Schema compilation: declarative filter configuration -> rule tree.

A schema is written as plain data::

    {
        "name": "string:64",
        "colour": "enum:red,green,blue",
        "address": {"street": "string", "zip": "regex:/^\\d{5}$/"},
        "tags": {"_values": "string:20"},
        "scores": {"_keys": "integer", "_values": "float"},
    }

and compiled once into immutable rules. Compilation is where every
mistake in the schema surfaces (unknown type, malformed options, a
``_keys`` entry without ``_values``), so the sanitizer itself never has
to signal anything.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from treb.errors import ConfigurationError
from treb.filter.assertions import ASSERTIONS, Assertion

KEYS = "_keys"
VALUES = "_values"

# Untrusted request sources a controller action can declare a schema for
SOURCES = ("post", "get", "cookie", "env", "server", "extra")


@dataclass(frozen=True, slots=True)
class ScalarRule:
    """A single ``type`` or ``type:options`` descriptor."""

    descriptor: str
    assertion: Assertion
    options: Any


@dataclass(frozen=True, slots=True)
class FieldsRule:
    """A nested field-name -> rule mapping (a sub-object)."""

    fields: tuple[tuple[Any, Rule], ...]


@dataclass(frozen=True, slots=True)
class ArrayRule:
    """A homogeneous array, optionally with asserted keys."""

    values: Rule
    keys: ScalarRule | None = None


type Rule = ScalarRule | FieldsRule | ArrayRule


def compile_schema(schema: Any, *, where: str = "schema") -> Rule:
    """Compile a schema (descriptor string or mapping) into a rule."""
    if isinstance(schema, (ScalarRule, FieldsRule, ArrayRule)):
        return schema
    if isinstance(schema, str):
        return compile_descriptor(schema, where=where)
    if isinstance(schema, Mapping):
        if VALUES in schema or KEYS in schema:
            return _compile_array(schema, where)
        return FieldsRule(
            fields=tuple(
                (key, compile_schema(sub, where=f"{where}.{key}")) for key, sub in schema.items()
            )
        )
    msg = f"{where}: expected a type descriptor or a mapping, got {type(schema).__name__}"
    raise ConfigurationError(msg)


def compile_descriptor(descriptor: str, *, where: str = "schema") -> ScalarRule:
    """Compile ``type`` or ``type:options``; only the first ``:`` splits."""
    name, sep, options = descriptor.partition(":")
    found = ASSERTIONS.get(name)
    if found is None:
        known = ", ".join(sorted(ASSERTIONS))
        msg = f"{where}: unknown filter type {name!r}. Known types: {known}"
        raise ConfigurationError(msg)
    try:
        prepared = found.prepare(options if sep else None)
    except ConfigurationError as exc:
        msg = f"{where}: {exc}"
        raise ConfigurationError(msg) from exc
    return ScalarRule(descriptor=descriptor, assertion=found, options=prepared)


def _compile_array(schema: Mapping[str, Any], where: str) -> ArrayRule:
    if VALUES not in schema:
        msg = f"{where}: '{KEYS}' requires a '{VALUES}' entry"
        raise ConfigurationError(msg)
    stray = set(schema) - {KEYS, VALUES}
    if stray:
        names = ", ".join(sorted(map(str, stray)))
        msg = f"{where}: '{VALUES}' cannot be combined with other fields ({names})"
        raise ConfigurationError(msg)

    keys = None
    if KEYS in schema:
        keys = compile_schema(schema[KEYS], where=f"{where}.{KEYS}")
        if not isinstance(keys, ScalarRule):
            msg = f"{where}.{KEYS}: key rules must be a type descriptor"
            raise ConfigurationError(msg)
    return ArrayRule(values=compile_schema(schema[VALUES], where=f"{where}.{VALUES}"), keys=keys)


def compile_expectations(expect: Mapping[str, Any], *, where: str = "expect") -> dict[str, Rule]:
    """Compile a per-source schema (``{"get": {...}, "post": {...}}``)."""
    compiled: dict[str, Rule] = {}
    for source, schema in expect.items():
        if source not in SOURCES:
            msg = f"{where}: unknown input source {source!r}. Sources: {', '.join(SOURCES)}"
            raise ConfigurationError(msg)
        compiled[source] = compile_schema(schema, where=f"{where}.{source}")
    return compiled
