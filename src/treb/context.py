"""Request-scoped context via ContextVar.

Provides:
- ``request_var``: the current ``Request``.
- ``cookies_var``: the request's ``CookieJar``; cookies set on it are
  applied to whatever response leaves the pipeline, error pages included.
- ``session_var``: the started ``Session``, when a controller asked for one.
- ``g``: a mutable namespace scoped to the current request.

All are set by the server pipeline and reset after each request.
Outside a request they raise ``LookupError`` (``g`` raises
``AttributeError`` for unknown names).
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from treb.http.cookies import CookieJar
    from treb.http.request import Request
    from treb.session.session import Session

request_var: ContextVar[Request] = ContextVar("treb_request")
cookies_var: ContextVar[CookieJar] = ContextVar("treb_cookies")
session_var: ContextVar[Session | None] = ContextVar("treb_session", default=None)


def get_request() -> Request:
    """Return the current request. Raises ``LookupError`` outside one."""
    return request_var.get()


def get_cookies() -> CookieJar:
    """Return the current request's cookie jar."""
    return cookies_var.get()


def get_session() -> Session | None:
    """Return the started session, or ``None`` when none was started."""
    return session_var.get()


class _RequestGlobals:
    """Per-request attribute namespace.

    Usage::

        from treb.context import g

        g.user = current_user     # in middleware
        name = g.user.name        # in a controller
    """

    __slots__ = ("_store",)

    def __init__(self) -> None:
        object.__setattr__(self, "_store", ContextVar("treb_g", default=None))

    def _dict(self) -> dict[str, Any]:
        store: ContextVar[dict[str, Any] | None] = object.__getattribute__(self, "_store")
        current = store.get()
        if current is None:
            current = {}
            store.set(current)
        return current

    def reset(self) -> None:
        """Start an empty namespace for a new request."""
        object.__getattribute__(self, "_store").set({})

    def __getattr__(self, name: str) -> Any:
        try:
            return self._dict()[name]
        except KeyError:
            msg = f"'g' has no attribute {name!r} in the current request scope"
            raise AttributeError(msg) from None

    def __setattr__(self, name: str, value: Any) -> None:
        self._dict()[name] = value

    def __delattr__(self, name: str) -> None:
        try:
            del self._dict()[name]
        except KeyError:
            msg = f"'g' has no attribute {name!r} in the current request scope"
            raise AttributeError(msg) from None

    def __contains__(self, name: str) -> bool:
        return name in self._dict()

    def get(self, name: str, default: Any = None) -> Any:
        return self._dict().get(name, default)

    def __repr__(self) -> str:
        return f"<g {self._dict()!r}>"


g = _RequestGlobals()
