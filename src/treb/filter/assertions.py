"""Scalar assertions: the dispatch table behind schema type names.

Each entry turns one raw input value into a cleaned value. Assertions
never raise for bad input; they degrade to a typed default (``0``,
``""``, ``None``, ``False``, or the first allowed option).

An assertion is two functions:

    prepare(options: str | None) -> Any
        Parse the text after the first ``:`` once, when the schema is
        compiled. Raises ``ConfigurationError`` for malformed options.

    coerce(value: Any, options: Any, lookups: Lookups) -> Any
        Clean a single value using the prepared options.

Custom types are registered with the ``assertion`` decorator before
the controllers that use them are defined::

    @assertion("slug")
    def assert_slug(value, options, lookups):
        text = assert_string(value, None, lookups)
        return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
"""

import calendar
import math
import re
import string
import unicodedata
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlsplit

from treb.errors import ConfigurationError
from treb.filter.lookups import Lookups

type Coerce = Callable[[Any, Any, Lookups], Any]
type Prepare = Callable[[str | None], Any]


def _no_options(options: str | None) -> None:
    return None


@dataclass(frozen=True, slots=True)
class Assertion:
    """A registered scalar type."""

    name: str
    coerce: Coerce
    prepare: Prepare = _no_options


ASSERTIONS: dict[str, Assertion] = {}


def assertion(name: str, *, prepare: Prepare = _no_options) -> Callable[[Coerce], Coerce]:
    """Register *func* as the assertion for type *name*."""

    def decorator(func: Coerce) -> Coerce:
        ASSERTIONS[name] = Assertion(name=name, coerce=func, prepare=prepare)
        return func

    return decorator


# ---------------------------------------------------------------------------
# Shared coercion helpers
# ---------------------------------------------------------------------------

_CONTAINERS = (Mapping, list, tuple, set, frozenset)

# Leading numeric prefix: "12abc" -> "12", " -3.5e2x" -> "-3.5e2"
_NUMERIC_PREFIX = re.compile(r"\s*[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def to_number(value: Any) -> int | float:
    """Best-effort numeric value with loose-typing semantics.

    Strings contribute their leading numeric prefix; containers count as
    1 when non-empty; anything unusable is 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value)
        if match is None:
            return 0
        text = match.group().strip()
        if any(c in text for c in ".eE"):
            return float(text)
        try:
            return int(text)
        except ValueError:
            # Past the interpreter's int conversion limit
            return float(text)
    if isinstance(value, _CONTAINERS):
        return 1 if value else 0
    return 0


def is_truthy(value: Any) -> bool:
    """Loose truthiness: ``""`` and ``"0"`` are false, like empty containers."""
    if isinstance(value, str):
        return value not in ("", "0")
    if isinstance(value, bytes):
        return value not in (b"", b"0")
    return bool(value)


def is_empty(value: Any) -> bool:
    return not is_truthy(value)


def to_text(value: Any) -> str | None:
    """Scalar to string, or ``None`` for containers and unknown objects."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return None


# ---------------------------------------------------------------------------
# Numbers and booleans
# ---------------------------------------------------------------------------


@assertion("integer")
def assert_integer(value: Any, options: Any, lookups: Lookups) -> int:
    number = to_number(value)
    if isinstance(number, float):
        if math.isnan(number) or math.isinf(number):
            return 0
        return int(number)
    return number


@assertion("float")
def assert_float(value: Any, options: Any, lookups: Lookups) -> float:
    number = float(to_number(value))
    if math.isnan(number):
        return 0.0
    return number


@assertion("boolean")
def assert_boolean(value: Any, options: Any, lookups: Lookups) -> bool:
    return is_truthy(value)


@assertion("raw")
def assert_raw(value: Any, options: Any, lookups: Lookups) -> Any:
    return value


# ---------------------------------------------------------------------------
# Strings
# ---------------------------------------------------------------------------

_COMMENT_RE = re.compile(r"<!--.*?(?:-->|$)", re.DOTALL)
# A tag opens with "<" directly followed by a letter, "/", "!" or "?";
# an unterminated tag runs to the end of the input.
_TAG_RE = re.compile(r"<(?=[A-Za-z/!?])[^>]*(?:>|$)", re.DOTALL)

# Private-use bullet glyphs pasted from word processors
_BULLETS = str.maketrans("", "", "\uf0b7\uf0a7")

_TRIM = " \t\n\r\0\x0b"


def strip_tags(text: str) -> str:
    """Remove markup tags and comments, keeping their text content."""
    return _TAG_RE.sub("", _COMMENT_RE.sub("", text))


def plain_spaces(text: str) -> str:
    """Replace every Unicode space separator (category Zs) with ``" "``."""
    return "".join(" " if unicodedata.category(c) == "Zs" else c for c in text)


def _prepare_max_length(options: str | None) -> int:
    if not options:
        return 0
    try:
        length = int(options)
    except ValueError:
        msg = f"string length must be an integer, got {options!r}"
        raise ConfigurationError(msg) from None
    if length < 0:
        msg = f"string length must not be negative, got {length}"
        raise ConfigurationError(msg)
    return length


@assertion("string", prepare=_prepare_max_length)
def assert_string(value: Any, options: Any, lookups: Lookups) -> str:
    text = to_text(value)
    if not text:
        return ""
    text = plain_spaces(strip_tags(text)).translate(_BULLETS).strip(_TRIM)
    if options:
        text = text[:options]
    return text


@assertion("hex")
def assert_hex(value: Any, options: Any, lookups: Lookups) -> str | None:
    if isinstance(value, str) and value and all(c in string.hexdigits for c in value):
        return value
    return None


@assertion("base36")
def assert_base36(value: Any, options: Any, lookups: Lookups) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    text = str(value).lower()
    if text and text.isascii() and text.isalnum():
        return text
    return None


# Basic email pattern: checks structure, not deliverability
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*$")
# Schemes that are valid without a host part
_HOSTLESS_SCHEMES = frozenset({"mailto", "news", "file", "urn", "tel"})


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def is_url(value: str) -> bool:
    if any(c.isspace() for c in value):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        return False
    if parts.netloc:
        return True
    return parts.scheme.lower() in _HOSTLESS_SCHEMES and bool(parts.path)


@assertion("email")
def assert_email(value: Any, options: Any, lookups: Lookups) -> Any:
    if is_empty(value):
        return None
    if not isinstance(value, str) or not is_email(value):
        return False
    return value


@assertion("url")
def assert_url(value: Any, options: Any, lookups: Lookups) -> Any:
    if is_empty(value):
        return None
    if not isinstance(value, str) or not is_url(value):
        return False
    return value


# ---------------------------------------------------------------------------
# Choices and patterns
# ---------------------------------------------------------------------------


def _prepare_enum(options: str | None) -> tuple[str, ...]:
    if options is None:
        msg = "enum requires a comma-separated list of options, e.g. 'enum:red,blue'"
        raise ConfigurationError(msg)
    return tuple(options.split(","))


@assertion("enum", prepare=_prepare_enum)
def assert_enum(value: Any, options: tuple[str, ...], lookups: Lookups) -> str:
    if value is not None and not isinstance(value, bool):
        text = to_text(value)
        if text is not None and text in options:
            return text
    return options[0]


_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "u": 0,
}
_BRACKETS = {"(": ")", "{": "}", "[": "]", "<": ">"}


def compile_pattern(source: str) -> re.Pattern[str]:
    """Compile a plain pattern or a delimited one such as ``/^ab+$/i``."""
    flags = 0
    body = source
    if len(source) >= 2 and not (source[0].isalnum() or source[0].isspace() or source[0] == "\\"):
        closing = _BRACKETS.get(source[0], source[0])
        end = source.rfind(closing)
        if end > 0:
            modifiers = source[end + 1 :]
            if all(m in _REGEX_FLAGS for m in modifiers):
                body = source[1:end]
                for m in modifiers:
                    flags |= _REGEX_FLAGS[m]
    try:
        return re.compile(body, flags)
    except re.error as exc:
        msg = f"Invalid regex {source!r}: {exc}"
        raise ConfigurationError(msg) from exc


def _prepare_regex(options: str | None) -> re.Pattern[str]:
    if not options:
        msg = "regex requires a pattern, e.g. 'regex:/^[a-z]+$/i'"
        raise ConfigurationError(msg)
    return compile_pattern(options)


@assertion("regex", prepare=_prepare_regex)
def assert_regex(value: Any, options: re.Pattern[str], lookups: Lookups) -> Any:
    if not is_truthy(value):
        return None
    text = to_text(value)
    if text is None or not options.search(text):
        return None
    return value


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_RELATIVE_RE = re.compile(
    r"^([+-]?\d+)\s*(sec|second|min|minute|hour|day|week|fortnight|month|year)s?(\s+ago)?$",
    re.IGNORECASE,
)
_UNIT_SECONDS = {
    "sec": 1,
    "second": 1,
    "min": 60,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "fortnight": 14 * 86400,
}
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _add_months(moment: datetime, months: int) -> datetime:
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def parse_date(text: str, now: datetime | None = None) -> int | None:
    """Parse a date expression into epoch seconds, or ``None``.

    Understands ISO 8601, RFC 2822, ``m/d/Y``, ``@<epoch>``, the words
    ``now``/``today``/``tomorrow``/``yesterday``, and relative offsets
    such as ``+1 day`` or ``3 weeks ago``. Naive times are UTC.
    """
    text = text.strip()
    if not text:
        return None
    now = now or datetime.now(UTC)
    lowered = text.lower()

    if lowered == "now":
        return int(now.timestamp())
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    words = {"today": 0, "midnight": 0, "tomorrow": 1, "yesterday": -1}
    if lowered in words:
        return int((midnight + timedelta(days=words[lowered])).timestamp())

    if text.startswith("@"):
        try:
            return int(float(text[1:]))
        except ValueError:
            return None

    relative = _RELATIVE_RE.match(text)
    if relative:
        amount = int(relative.group(1))
        unit = relative.group(2).lower()
        if relative.group(3):
            amount = -amount
        if unit == "month":
            return int(_add_months(now, amount).timestamp())
        if unit == "year":
            return int(_add_months(now, amount * 12).timestamp())
        return int((now + timedelta(seconds=amount * _UNIT_SECONDS[unit])).timestamp())

    us_date = _US_DATE_RE.match(text)
    if us_date:
        month, day, year = (int(part) for part in us_date.groups())
        try:
            return int(datetime(year, month, day, tzinfo=UTC).timestamp())
        except ValueError:
            return None

    moment: datetime | None
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        try:
            moment = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            moment = None
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp())


@assertion("date")
def assert_date(value: Any, options: Any, lookups: Lookups) -> int | bool:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    if not isinstance(value, str):
        return False
    parsed = parse_date(value)
    if parsed is None:
        return False
    return parsed


# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LookupOptions:
    kind: str  # "keys" or "array"
    table: str
    nullable: bool


def _prepare_data(options: str | None) -> LookupOptions:
    parts = (options or "").split(":")
    if len(parts) < 2 or parts[0] not in ("keys", "array") or not parts[1]:
        msg = f"data expects 'data:keys:<table>' or 'data:array:<table>', got {options!r}"
        raise ConfigurationError(msg)
    nullable = len(parts) > 2 and parts[2] == "null"
    return LookupOptions(kind=parts[0], table=parts[1], nullable=nullable)


_INT_KEY = re.compile(r"-?[0-9]{1,18}")


def _loose_key(value: Any, table: Mapping[Any, Any]) -> tuple[bool, Any]:
    """Find *value* among the keys of *table*; digit strings match ints."""
    if isinstance(value, bool) or value is None or isinstance(value, _CONTAINERS):
        return False, None
    if value in table:
        return True, value
    if isinstance(value, str) and _INT_KEY.fullmatch(value) and int(value) in table:
        return True, int(value)
    if isinstance(value, int) and str(value) in table:
        return True, str(value)
    return False, None


@assertion("data", prepare=_prepare_data)
def assert_data(value: Any, options: LookupOptions, lookups: Lookups) -> Any:
    table = lookups.table(options.table)
    if options.kind == "keys":
        found, key = _loose_key(value, table)
        if found:
            return key
        if options.nullable:
            return None
        return next(iter(table), None)

    values = list(table.values())
    if value is not None and not isinstance(value, _CONTAINERS):
        text = to_text(value)
        for candidate in values:
            if candidate == value or (text is not None and to_text(candidate) == text):
                return candidate
    if options.nullable or not values:
        return None
    return values[0]
