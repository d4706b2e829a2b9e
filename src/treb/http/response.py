"""HTTP response with chainable .with_*() transformation API.

Each transformation returns a new Response. Immutable by convention.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Iterator, Mapping
from dataclasses import dataclass, replace

from treb.http.cookies import SetCookie


@dataclass(frozen=True, slots=True)
class Response:
    """An HTTP response built through immutable transformations.

    Construct with a body, then chain ``.with_*()`` calls to set
    status, headers, and cookies. Each call returns a new ``Response``.
    """

    body: str | bytes = ""
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()

    def with_status(self, status: int) -> Response:
        """Return a new Response with a different status code."""
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> Response:
        """Return a new Response with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(self, headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> Response:
        """Return a new Response with additional headers."""
        new = tuple(headers.items()) if isinstance(headers, Mapping) else tuple(headers)
        return replace(self, headers=(*self.headers, *new))

    def with_content_type(self, content_type: str) -> Response:
        """Return a new Response with a different content type."""
        return replace(self, content_type=content_type)

    def with_cookies(self, cookies: Iterable[SetCookie]) -> Response:
        """Return a new Response with additional Set-Cookie directives."""
        return replace(self, cookies=(*self.cookies, *cookies))

    def header(self, name: str) -> str | None:
        """First value of header *name* (case-insensitive), or ``None``."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body


@dataclass(frozen=True, slots=True)
class StreamingResponse:
    """A response whose body is produced chunk by chunk.

    Headers are sent immediately, then each chunk as an ASGI body
    message with ``more_body=True``. Supports the same ``.with_*()``
    API as ``Response`` so the pipeline can add headers and cookies
    without knowing the body is streamed.
    """

    chunks: Iterator[str | bytes] | AsyncIterator[str | bytes]
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()

    def with_status(self, status: int) -> StreamingResponse:
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> StreamingResponse:
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(
        self, headers: Mapping[str, str] | Iterable[tuple[str, str]]
    ) -> StreamingResponse:
        new = tuple(headers.items()) if isinstance(headers, Mapping) else tuple(headers)
        return replace(self, headers=(*self.headers, *new))

    def with_content_type(self, content_type: str) -> StreamingResponse:
        return replace(self, content_type=content_type)

    def with_cookies(self, cookies: Iterable[SetCookie]) -> StreamingResponse:
        return replace(self, cookies=(*self.cookies, *cookies))


type AnyResponse = Response | StreamingResponse
