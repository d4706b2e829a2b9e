"""Immutable HTTP request.

Frozen metadata with async body access, plus the client facts the
framework keeps asking for: the client address behind proxies, the user
agent, whether the call came from script (``X-Requested-With``).
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from treb._internal.asgi import Receive
from treb.http.cookies import parse_cookies
from treb.http.headers import Headers
from treb.http.query import QueryParams

if TYPE_CHECKING:
    from treb.http.forms import FormData

UNKNOWN_IP = "0.0.0.0"
UNKNOWN_AGENT = "NONE"


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Metadata (method, path, headers, etc.) is frozen at creation.
    Body is accessed asynchronously via ``.body()``, ``.json()``,
    ``.form()`` and ``.post_data()``.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    http_version: str
    server: tuple[str, int] | None
    client: tuple[str, int] | None
    cookies: Mapping[str, str]
    root_path: str

    # Private: ASGI receive callable for body streaming
    _receive: Receive

    # Private: mutable cache for body and parsed form data
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def content_length(self) -> int | None:
        """The Content-Length header as int."""
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def url(self) -> str:
        """Request path plus query string."""
        qs = self.query.raw
        if qs:
            return f"{self.path}?{qs}"
        return self.path

    @property
    def url_stub(self) -> str:
        """Request path without the query string."""
        return self.path

    @property
    def is_post(self) -> bool:
        return self.method == "POST"

    @property
    def is_ajax(self) -> bool:
        """True when the request was made from script (``X-Requested-With``)."""
        return bool(self.headers.get("x-requested-with"))

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent") or UNKNOWN_AGENT

    @property
    def client_ip(self) -> str:
        """Client address, trusting the last ``X-Forwarded-For`` hop."""
        forwarded = self.headers.get("x-forwarded-for")
        if forwarded:
            last = forwarded.split(",")[-1].strip()
            if last:
                return last
        if self.client:
            return self.client[0]
        return UNKNOWN_IP

    def server_variables(self) -> dict[str, str]:
        """CGI-style variables describing this request (the ``server`` source)."""
        host, port = self.server or ("", 0)
        variables = {
            "REQUEST_METHOD": self.method,
            "REQUEST_URI": self.url,
            "PATH_INFO": self.path,
            "SCRIPT_NAME": self.root_path,
            "QUERY_STRING": self.query.raw,
            "SERVER_NAME": self.headers.get("host", host).split(":")[0] or host,
            "SERVER_PORT": str(port),
            "SERVER_PROTOCOL": f"HTTP/{self.http_version}",
            "REMOTE_ADDR": self.client[0] if self.client else UNKNOWN_IP,
            "REMOTE_PORT": str(self.client[1]) if self.client else "0",
        }
        variables.update(self.headers.cgi_variables())
        return variables

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body (consumed once, then cached)."""
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def json(self) -> Any:
        """Parse the body as JSON."""
        raw = await self.body()
        return json_module.loads(raw)

    async def text(self) -> str:
        """Read the body as text (UTF-8)."""
        raw = await self.body()
        return raw.decode("utf-8")

    async def form(self) -> FormData:
        """Parse the body as form data (URL-encoded or multipart). Cached."""
        if "_form" in self._cache:
            return self._cache["_form"]

        from treb.http.forms import parse_form_data

        ct = self.content_type or "application/x-www-form-urlencoded"
        raw = await self.body()
        result = await parse_form_data(raw, ct)
        self._cache["_form"] = result
        return result

    async def post_data(self) -> Any:
        """The ``post`` input source: nested form fields or a JSON document.

        Bodies that are neither (or are malformed) give an empty mapping;
        sanitizing treats that like any other missing input.
        """
        if self.method in ("GET", "HEAD"):
            return {}
        ct = (self.content_type or "").lower()
        if "json" in ct:
            try:
                return await self.json()
            except ValueError:
                return {}
        if ct.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            try:
                form = await self.form()
            except ValueError:
                return {}
            return form.nested()
        return {}

    # -- Factory --

    @classmethod
    def from_asgi(cls, scope: dict[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        headers = Headers(tuple(scope.get("headers", ())))
        server = scope.get("server")
        client = scope.get("client")
        return cls(
            method=scope["method"],
            path=scope["path"],
            headers=headers,
            query=QueryParams(scope.get("query_string", b"")),
            http_version=scope.get("http_version", "1.1"),
            server=tuple(server) if server else None,
            client=tuple(client) if client else None,
            cookies=parse_cookies(headers.get("cookie", "")),
            root_path=scope.get("root_path", ""),
            _receive=receive,
        )
