"""Error responses for treb requests.

Maps HTTPError exceptions and unexpected failures to Responses, using
handlers registered with ``@app.error(...)`` or the built-in pages.

Unexpected failures are logged on the ``exception`` category at FATAL
as ``|Type|message|file|line|`` with the traceback attached; the page
shows the details only when ``config.env.development`` is set.
"""

import html
import inspect
import traceback
from collections.abc import Callable
from typing import Any

from treb._internal.invoke import invoke
from treb.errors import HTTPError
from treb.http.request import Request
from treb.http.response import AnyResponse, Response, StreamingResponse
from treb.log import FATAL, get_logger
from treb.services import ViewRenderer

logger = get_logger("server")
exception_log = get_logger("exception")

TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Request Entity Too Large",
    500: "Server Error",
}

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta http-equiv="Content-Type" content="text/html; charset={charset}" />
    <title>Treb - {title}!</title>
</head>
<body>
    <h1>Error {status}: {title}</h1>
    <p><em>-- Generic Treb Framework error message</em></p>
{extra}</body>
</html>
"""


def error_page(status: int, extra: str = "", *, charset: str = "utf-8") -> Response:
    """The built-in HTML page for *status*; *extra* is inserted as-is."""
    title = TITLES.get(status, "Error")
    body = _PAGE.format(
        charset=charset,
        title=title,
        status=status,
        extra=f"    <p>{extra}</p>\n" if extra else "",
    )
    return Response(body=body, status=status, content_type=f"text/html; charset={charset}")


async def render_error_page(
    status: int,
    extra: str = "",
    *,
    renderer: ViewRenderer | None = None,
    charset: str = "utf-8",
) -> Response:
    """The ``"<status>"`` view (``"404"``, ``"500"``) when a renderer is
    configured, otherwise the built-in page.

    A renderer that fails is logged and the built-in page is used.
    """
    if renderer is not None:
        data = {"status": status, "title": TITLES.get(status, "Error"), "detail": extra}
        try:
            body = await invoke(renderer, str(status), data)
        except Exception as exc:
            log_exception(exc)
        else:
            return Response(body=body, status=status, content_type=f"text/html; charset={charset}")
    return error_page(status, extra, charset=charset)


def describe(exc: BaseException) -> tuple[str, int]:
    """File and line where *exc* was raised."""
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "", 0
    return frames[-1].filename, frames[-1].lineno or 0


def log_exception(exc: BaseException) -> None:
    file, line = describe(exc)
    exception_log.log(
        FATAL,
        "|%s|%s|%s|%s|",
        type(exc).__name__,
        exc,
        file,
        line,
        exc_info=(type(exc), exc, exc.__traceback__),
    )


def development_detail(exc: BaseException) -> str:
    """HTML fragment with the exception, its origin and the traceback."""
    file, line = describe(exc)
    trace = "".join(traceback.format_exception(exc))
    return (
        "<span style='color:red'>Unhandled Exception: "
        f"{html.escape(type(exc).__name__)}, {html.escape(str(exc))}"
        f"<br />FILE: {html.escape(file)}"
        f"<br />LINE: {line}"
        f"<br />TRACE:<br />{html.escape(trace).replace(chr(10), '<br />')}</span>"
    )


async def call_error_handler(
    handler: Callable[..., Any],
    request: Request,
    exc: Exception,
) -> AnyResponse:
    """Invoke a registered error handler.

    Handlers may accept zero, one (request), or two (request, exc)
    arguments, may be sync or async, and may return a Response or a
    string body.
    """
    params = list(inspect.signature(handler).parameters.values())
    if len(params) >= 2:
        result = handler(request, exc)
    elif len(params) == 1:
        result = handler(request)
    else:
        result = handler()
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, (Response, StreamingResponse)):
        return result
    return Response(body=result if isinstance(result, (str, bytes)) else str(result))


async def handle_http_error(
    exc: HTTPError,
    request: Request,
    error_handlers: dict[int | type, Callable[..., Any]],
    *,
    renderer: ViewRenderer | None = None,
    charset: str = "utf-8",
) -> AnyResponse:
    """Map an HTTPError to a Response using registered error handlers."""
    logger.debug("%d %s %s: %s", exc.status, request.method, request.path, exc.detail)

    handler = error_handlers.get(type(exc)) or error_handlers.get(exc.status)
    if handler is not None:
        response = await call_error_handler(handler, request, exc)
        if response.status == 200:
            response = response.with_status(exc.status)
    elif exc.status in (301, 302):
        response = Response(body="", status=exc.status)
    elif exc.status in (401, 403):
        response = Response(
            body=exc.detail,
            status=exc.status,
            content_type=f"text/plain; charset={charset}",
        )
    else:
        response = await render_error_page(exc.status, renderer=renderer, charset=charset)

    return response.with_headers(exc.headers)


async def handle_internal_error(
    exc: Exception,
    request: Request,
    error_handlers: dict[int | type, Callable[..., Any]],
    *,
    development: bool,
    renderer: ViewRenderer | None = None,
    charset: str = "utf-8",
) -> AnyResponse:
    """Log an unexpected exception and build the 500 response."""
    log_exception(exc)

    handler = error_handlers.get(type(exc)) or error_handlers.get(500)
    if handler is not None:
        response = await call_error_handler(handler, request, exc)
        return response.with_status(500) if response.status == 200 else response

    extra = development_detail(exc) if development else ""
    return await render_error_page(500, extra, renderer=renderer, charset=charset)


def inline_error(exc: BaseException, *, development: bool) -> str:
    """Text appended to a body that was already partly sent."""
    if development:
        return f"\n{development_detail(exc)}\n"
    return "\n<!-- treb: error while sending the response -->\n"
