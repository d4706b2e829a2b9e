"""Application configuration.

AppConfig is a tree of frozen dataclasses: immutable after creation,
IDE-autocompletable, no string-key dict lookups. Each section groups the
settings one subsystem consumes (``env`` for charset and development
mode, ``security`` for the hijack check, and so on).

Build it directly::

    config = AppConfig(
        env=EnvConfig(development=True),
        session=SessionConfig(secret_key="s3cr3t"),
    )

or from an already-parsed document (TOML, JSON, ...)::

    config = AppConfig.from_mapping(tomllib.load(fh))
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, get_type_hints

from treb.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class EnvConfig:
    """Runtime environment."""

    development: bool = False
    charset: str = "utf-8"
    domain: str | None = None


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Session storage.

    ``store`` is ``"cookie"`` (signed client-side cookie) or ``"cache"``
    (data kept in the cache, the cookie carries a signed session id).
    """

    secret_key: str = ""
    store: str = "cookie"
    cookie_name: str = "SESSID"
    max_age: int = 86400
    path: str = "/"
    secure: bool = False
    samesite: str = "lax"


@dataclass(frozen=True, slots=True)
class HijackConfig:
    disable: bool = False
    cookie: str = "MyVoiceIsMyPassport"
    salt: str = ""


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    hijack: HijackConfig = field(default_factory=HijackConfig)
    csrf_ttl: int = 14400


@dataclass(frozen=True, slots=True)
class CacheConfig:
    """Cache connection. ``url`` selects the backend: empty for the
    in-process memory backend, ``redis://...`` for redis."""

    disable: bool = False
    prefix: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class CookieConfig:
    prefix: str = ""
    secure: bool = False
    samesite: str = "lax"


@dataclass(frozen=True, slots=True)
class LogConfig:
    directory: str | Path | None = None
    level: str = "WARNING"
    disable: bool = False


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Named connection pools.

    Each pool is a tuple of server URLs; one is picked at random per
    connection and the others are tried on failure. Unknown pool names
    fall back to ``default``.
    """

    pools: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    default: str = "default"
    pool_size: int = 5
    echo: bool = False


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need.
    """

    env: EnvConfig = field(default_factory=EnvConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    cookies: CookieConfig = field(default_factory=CookieConfig)
    log: LogConfig = field(default_factory=LogConfig)
    databases: DatabaseConfig = field(default_factory=DatabaseConfig)

    # Limits
    max_content_length: int = 16 * 1024 * 1024  # 16 MB

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AppConfig:
        """Build a config tree from nested mappings.

        Raises ``ConfigurationError`` for unknown keys or a section given
        as a scalar.
        """
        return _build(cls, data, "")


def _build(cls: type, data: Mapping[str, Any], where: str) -> Any:
    if not isinstance(data, Mapping):
        msg = f"Config section {where or '<root>'!r} must be a mapping, got {type(data).__name__}"
        raise ConfigurationError(msg)

    hints = get_type_hints(cls)
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        names = ", ".join(sorted(unknown))
        msg = f"Unknown config key(s) in {where or '<root>'!r}: {names}"
        raise ConfigurationError(msg)

    values: dict[str, Any] = {}
    for name, value in data.items():
        hint = hints[name]
        path = f"{where}.{name}" if where else name
        if is_dataclass(hint):
            values[name] = _build(hint, value, path)
        elif name == "pools":
            values[name] = {
                pool: (servers,) if isinstance(servers, str) else tuple(servers)
                for pool, servers in value.items()
            }
        else:
            values[name] = value
    return cls(**values)
