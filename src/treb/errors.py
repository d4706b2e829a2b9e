"""Treb exception hierarchy.

Shared across the dispatcher, controllers, sessions, and the server
pipeline so every module raises and catches the same types. Every
``HTTPError`` maps to exactly one response; anything else reaching the
top-level boundary becomes a 500.
"""

from dataclasses import dataclass

DEFAULT_REALM = "Treb Framework"


class TrebError(Exception):
    """Base for all treb-specific errors."""


class ConfigurationError(TrebError):
    """Raised when app configuration or a declared schema is invalid.

    Typically raised while controllers are registered or during
    ``App._freeze()`` at startup, never while serving a request.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(TrebError):
    """An error that maps directly to an HTTP status code.

    Raised by the dispatcher, sessions, or controllers. The ASGI handler
    catches these and dispatches to the matching ``@app.error()`` handler.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818
    """404: no controller or action resolved, or extra segments were refused."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


RouteNotFound = NotFound


class Redirect(HTTPError):  # noqa: N818
    """301/302 with a ``Location`` header.

    CR and LF in the target are replaced with spaces so a URL built from
    request data can never inject headers.
    """

    def __init__(self, location: str = "/", *, permanent: bool = False) -> None:
        location = _header_safe(location) or "/"
        super().__init__(
            status=301 if permanent else 302,
            detail=location,
            headers=(("Location", location),),
        )

    @property
    def location(self) -> str:
        return self.detail


class Unauthorized(HTTPError):  # noqa: N818
    """401 with a Basic ``WWW-Authenticate`` challenge."""

    def __init__(self, realm: str = "") -> None:
        realm = _header_safe(realm).replace('"', "") or DEFAULT_REALM
        super().__init__(
            status=401,
            detail="Unauthorized access",
            headers=(("WWW-Authenticate", f'Basic realm="{realm}"'),),
        )


class Forbidden(HTTPError):  # noqa: N818
    """403 with a plain-text body."""

    def __init__(self, detail: str = "") -> None:
        super().__init__(status=403, detail=detail or "Request Denied")


class SessionIntegrityViolation(HTTPError):  # noqa: N818
    """The session and its anti-hijack token disagree.

    Programmatic clients get a 403; browsers are redirected so they pick
    up the freshly started session.
    """

    def __init__(self, *, ajax: bool, location: str = "/") -> None:
        if ajax:
            super().__init__(status=403, detail="Request Denied")
        else:
            location = _header_safe(location) or "/"
            super().__init__(status=302, detail=location, headers=(("Location", location),))


def http_error(code: int, extra: str = "") -> HTTPError:
    """Build the HTTPError for *code*.

    ``extra`` is the redirect target for 301/302, the realm for 401, and
    the body for 403. Codes outside 100..599 become 500.
    """
    if code < 100 or code > 599:
        code = 500
    if code in (301, 302):
        return Redirect(extra or "/", permanent=code == 301)
    if code == 401:
        return Unauthorized(extra)
    if code == 403:
        return Forbidden(extra)
    if code == 404:
        return NotFound(extra or "Not Found")
    return HTTPError(status=code, detail=extra)


def _header_safe(value: str) -> str:
    return value.replace("\r", " ").replace("\n", " ")
