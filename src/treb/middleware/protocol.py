"""Middleware protocol and Next type alias.

A middleware is any callable matching::

    async def my_mw(request: Request, next: Next) -> AnyResponse: ...

Middleware runs around controller dispatch, so it sees every request
that reaches the app, including the ones that end in an error page.
Cookies set through ``treb.context.get_cookies()`` are applied to the
final response whichever way it was produced.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from treb.http.request import Request
from treb.http.response import AnyResponse

# The next handler in the middleware chain
type Next = Callable[[Request], Awaitable[AnyResponse]]


class Middleware(Protocol):
    """Protocol for treb middleware.

    Accepts both functions and callable objects::

        async def powered_by(request: Request, next: Next) -> AnyResponse:
            response = await next(request)
            return response.with_header("X-Powered-By", "Treb")

        class Maintenance:
            async def __call__(self, request: Request, next: Next) -> AnyResponse:
                raise http_error(503)
    """

    async def __call__(self, request: Request, next: Next) -> AnyResponse: ...
