"""Treb: a controller-based MVC web framework.

URLs map onto a tree of controller classes, every input a controller
reads is declared and sanitized first, and sessions, caching and
database pools are handed to controllers explicitly.

Basic usage::

    from treb import App, Controller, action

    app = App()

    @app.controller("home")
    class Home(Controller):
        @action(expect={"get": {"name": "string"}})
        async def home(self):
            self.title = "Hello"
            self.content = f"Hello, {self.args.get['name'] or 'world'}!"

Serve it with any ASGI server::

    uvicorn myapp:app
"""

__version__ = "0.1.0"
__all__ = [
    "AnyResponse",
    "App",
    "AppConfig",
    "ConfigurationError",
    "Controller",
    "Forbidden",
    "HTTPError",
    "Middleware",
    "Next",
    "NotFound",
    "Redirect",
    "Request",
    "Response",
    "RouteNotFound",
    "Services",
    "StreamingResponse",
    "TrebError",
    "Unauthorized",
    "action",
    "g",
    "get_request",
    "get_session",
    "http_error",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import treb`` fast while providing a clean top-level API.
    """
    if name == "App":
        from treb.app import App

        return App

    if name == "AppConfig":
        from treb.config import AppConfig

        return AppConfig

    if name in ("Controller", "action"):
        from treb import controller as _controller

        return getattr(_controller, name)

    if name == "Services":
        from treb.services import Services

        return Services

    if name == "Request":
        from treb.http.request import Request

        return Request

    if name in ("Response", "StreamingResponse"):
        from treb.http import response as _resp

        return getattr(_resp, name)

    if name in ("AnyResponse", "Middleware", "Next"):
        from treb.middleware import protocol as _mw

        return getattr(_mw, name)

    if name in ("g", "get_request", "get_session"):
        from treb import context as _ctx

        return getattr(_ctx, name)

    if name in (
        "ConfigurationError",
        "Forbidden",
        "HTTPError",
        "NotFound",
        "Redirect",
        "RouteNotFound",
        "TrebError",
        "Unauthorized",
        "http_error",
    ):
        from treb import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
