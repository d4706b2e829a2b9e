"""Declarative input sanitizing.

Schemas are compiled once (``compile_schema``) and applied by a
``Filter`` bound to lookup tables. See ``treb.filter.assertions`` for
the scalar types and how to register new ones.
"""

from treb.filter.assertions import ASSERTIONS, Assertion, assertion
from treb.filter.lookups import Lookups
from treb.filter.sanitizer import Filter, SanitizedArgs
from treb.filter.schema import (
    SOURCES,
    ArrayRule,
    FieldsRule,
    Rule,
    ScalarRule,
    compile_expectations,
    compile_schema,
)

__all__ = [
    "ASSERTIONS",
    "SOURCES",
    "ArrayRule",
    "Assertion",
    "FieldsRule",
    "Filter",
    "Lookups",
    "Rule",
    "SanitizedArgs",
    "ScalarRule",
    "assertion",
    "compile_expectations",
    "compile_schema",
]
