"""ASGI response sending: treb Response types to ASGI messages.

Single-body responses carry a Content-Length. Streaming responses send
their headers first and each chunk as it is produced; once the status
line is out a failure can no longer become an error page, so it is
logged and the error text is appended to the body instead.
"""

from collections.abc import AsyncIterator

from treb._internal.asgi import Send
from treb.http.response import Response, StreamingResponse
from treb.server.errors import inline_error, log_exception


def _body_allowed(status: int) -> bool:
    # 1xx, 204 and 304 carry no body
    return not (100 <= status < 200 or status in {204, 304})


def _raw_headers(response: Response | StreamingResponse) -> list[tuple[bytes, bytes]]:
    raw: list[tuple[bytes, bytes]] = [(b"content-type", response.content_type.encode("latin-1"))]
    raw.extend((name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in response.headers)
    raw.extend((b"set-cookie", cookie.to_header_value().encode("latin-1")) for cookie in response.cookies)
    return raw


async def send_response(response: Response, send: Send, *, head: bool = False) -> None:
    """Send a complete response; *head* drops the body but keeps its length."""
    raw_headers = _raw_headers(response)
    body = response.body_bytes if _body_allowed(response.status) else b""
    raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await send({"type": "http.response.start", "status": response.status, "headers": raw_headers})
    await send({"type": "http.response.body", "body": b"" if head else body})


def _encode(chunk: str | bytes) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


async def send_streaming_response(
    response: StreamingResponse,
    send: Send,
    *,
    development: bool = False,
) -> None:
    """Send a streaming response with chunked transfer encoding."""
    raw_headers = _raw_headers(response)
    raw_headers.append((b"transfer-encoding", b"chunked"))
    await send({"type": "http.response.start", "status": response.status, "headers": raw_headers})

    async def emit(chunk: str | bytes) -> None:
        if chunk:
            await send({"type": "http.response.body", "body": _encode(chunk), "more_body": True})

    try:
        if isinstance(response.chunks, AsyncIterator):
            async for chunk in response.chunks:
                await emit(chunk)
        else:
            for chunk in response.chunks:
                await emit(chunk)
    except Exception as exc:
        log_exception(exc)
        await emit(inline_error(exc, development=development))

    await send({"type": "http.response.body", "body": b"", "more_body": False})
