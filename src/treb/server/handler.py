"""ASGI handler: translates ASGI scope/messages to treb types.

The only component that touches raw HTTP scopes. Builds the Request and
its CookieJar, opens the per-request scopes (context vars, the cache's
local layer, ``g``), runs middleware around the dispatcher, and sends
the response back through ASGI ``send()``.

Whatever ends the request (a rendered page, an HTTPError, an unexpected
exception), the started session is saved and the cookies queued on the
jar are applied to the outgoing response.
"""

from collections.abc import Callable
from contextvars import Token
from typing import Any

from treb._internal.asgi import Receive, Scope, Send
from treb.context import cookies_var, g, request_var, session_var
from treb.errors import HTTPError
from treb.http.cookies import CookieJar
from treb.http.request import Request
from treb.http.response import StreamingResponse
from treb.middleware.protocol import AnyResponse, Next
from treb.routing.dispatcher import Dispatcher
from treb.server.errors import handle_http_error, handle_internal_error, log_exception
from treb.server.sender import send_response, send_streaming_response
from treb.services import Services
from treb.session.store import SessionStore


def _chain(dispatch: Next, middleware: tuple[Callable[..., Any], ...]) -> Next:
    handler = dispatch
    for mw in reversed(middleware):

        async def make_next(req: Request, _mw: Any = mw, _next: Next = handler) -> AnyResponse:
            return await _mw(req, _next)

        handler = make_next
    return handler


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    dispatcher: Dispatcher,
    middleware: tuple[Callable[..., Any], ...],
    error_handlers: dict[int | type, Callable[..., Any]],
    services: Services,
    session_store: SessionStore | None = None,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    config = services.config
    charset = config.env.charset
    development = config.env.development

    request = Request.from_asgi(scope, receive)
    cookies = CookieJar(request.cookies, config=config.cookies, domain=config.env.domain)

    request_token: Token[Request] = request_var.set(request)
    cookies_token: Token[CookieJar] = cookies_var.set(cookies)
    session_token = session_var.set(None)
    g.reset()

    with services.cache.local_scope():
        try:
            length = request.content_length
            if length is not None and length > config.max_content_length:
                raise HTTPError(status=413, detail="Request body too large")

            async def dispatch(req: Request) -> AnyResponse:
                return await dispatcher.dispatch(req, cookies)

            response = await _chain(dispatch, middleware)(request)

        except HTTPError as exc:
            response = await handle_http_error(
                exc,
                request,
                error_handlers,
                renderer=services.renderer,
                charset=charset,
            )
        except Exception as exc:
            response = await handle_internal_error(
                exc,
                request,
                error_handlers,
                development=development,
                renderer=services.renderer,
                charset=charset,
            )

        try:
            session = session_var.get()
            if session is not None and session_store is not None:
                try:
                    await session_store.save(session, cookies)
                except Exception as exc:
                    # The response is already decided; a lost session write is logged only
                    log_exception(exc)
        finally:
            g.reset()
            session_var.reset(session_token)
            cookies_var.reset(cookies_token)
            request_var.reset(request_token)

        response = response.with_cookies(cookies.pending())

        if isinstance(response, StreamingResponse):
            await send_streaming_response(response, send, development=development)
        else:
            await send_response(response, send, head=request.method == "HEAD")
