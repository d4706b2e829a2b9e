"""Cookie parsing, SetCookie serialization, and the per-request jar.

``parse_cookies`` is the read side (used by Request). ``SetCookie`` is a
single ``Set-Cookie`` directive. ``CookieJar`` collects the directives a
request produces (from the controller, the session, the hijack check)
so the server pipeline can attach them to whatever response is finally
sent, error pages included.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime
from urllib.parse import quote, unquote

from treb.config import CookieConfig

# Deleted cookies are expired two days in the past so clock skew
# between server and browser cannot keep them alive.
_DELETE_OFFSET = timedelta(days=2)


def parse_cookies(header: str) -> dict[str, str]:
    """Parse a ``Cookie`` header value into a name-value dict.

    Values are percent-decoded. Returns an empty dict for empty or
    missing headers.
    """
    if not header:
        return {}
    cookies: dict[str, str] = {}
    for pair in header.split(";"):
        pair = pair.strip()
        if "=" in pair:
            key, _, value = pair.partition("=")
            cookies[key.strip()] = unquote(value.strip().strip('"'))
    return cookies


def prefixed(name: str, prefix: str | None) -> str:
    """``<prefix>_<name>`` when a prefix is given, else *name*."""
    return f"{prefix}_{name}" if prefix else name


@dataclass(frozen=True, slots=True)
class SetCookie:
    """A ``Set-Cookie`` directive attached to a Response."""

    name: str
    value: str
    max_age: int | None = None
    expires: datetime | None = None
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True
    samesite: str = "lax"

    def to_header_value(self) -> str:
        """Serialize to a ``Set-Cookie`` header value string."""
        parts = [f"{self.name}={quote(self.value, safe='')}"]
        if self.expires is not None:
            parts.append(f"Expires={format_datetime(self.expires, usegmt=True)}")
        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        if self.path:
            parts.append(f"Path={self.path}")
        if self.domain:
            parts.append(f"Domain={self.domain}")
        if self.secure:
            parts.append("Secure")
        if self.httponly:
            parts.append("HttpOnly")
        if self.samesite:
            parts.append(f"SameSite={self.samesite}")
        return "; ".join(parts)


class CookieJar:
    """Outgoing cookies for one request.

    Applies the configured cookie domain and security defaults. Setting
    the same name twice keeps only the last directive.
    """

    __slots__ = ("_config", "_cookies", "_domain", "_incoming")

    def __init__(
        self,
        incoming: Mapping[str, str] | None = None,
        *,
        config: CookieConfig | None = None,
        domain: str | None = None,
    ) -> None:
        self._incoming: Mapping[str, str] = incoming or {}
        self._config = config or CookieConfig()
        self._domain = domain
        self._cookies: dict[str, SetCookie] = {}

    def _prefix(self, prefix: str | None) -> str:
        return self._config.prefix if prefix is None else prefix

    def get(self, name: str, prefix: str | None = None, default: str | None = None) -> str | None:
        """Read an incoming cookie, honoring a value set earlier in this request."""
        full = prefixed(name, self._prefix(prefix))
        pending = self._cookies.get(full)
        if pending is not None:
            return pending.value if pending.max_age != 0 else default
        return self._incoming.get(full, default)

    def set(
        self,
        name: str,
        value: str,
        expire: int = 0,
        *,
        path: str = "/",
        domain: str | None = None,
        secure: bool | None = None,
        httponly: bool = True,
        prefix: str | None = None,
    ) -> SetCookie:
        """Queue a cookie; *expire* is seconds from now, 0 for a session cookie."""
        cookie = SetCookie(
            name=prefixed(name, self._prefix(prefix)),
            value=value,
            max_age=expire if expire > 0 else None,
            expires=datetime.now(UTC) + timedelta(seconds=expire) if expire > 0 else None,
            path=path,
            domain=domain or self._domain,
            secure=self._config.secure if secure is None else secure,
            httponly=httponly,
            samesite=self._config.samesite,
        )
        self._cookies[cookie.name] = cookie
        return cookie

    def delete(self, name: str, *, prefix: str | None = None, path: str = "/") -> SetCookie:
        """Queue an expired, empty cookie."""
        cookie = SetCookie(
            name=prefixed(name, self._prefix(prefix)),
            value="",
            max_age=0,
            expires=datetime.now(UTC) - _DELETE_OFFSET,
            path=path,
            domain=self._domain,
            secure=self._config.secure,
            samesite=self._config.samesite,
        )
        self._cookies[cookie.name] = cookie
        return cookie

    def pending(self) -> tuple[SetCookie, ...]:
        return tuple(self._cookies.values())

    def __len__(self) -> int:
        return len(self._cookies)
