"""Treb application class.

Mutable during setup (controller registration, middleware, error
handlers). Frozen at runtime when ``__call__()`` is first invoked: the
controller tree, the ``Services`` bundle, the session store and the
dispatcher are built once and shared by every request.
"""

import inspect
import threading
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from treb._internal.asgi import Receive, Scope, Send
from treb.cache import Cache, build_cache
from treb.config import AppConfig
from treb.controller import Controller
from treb.data.pools import DatabasePools
from treb.errors import ConfigurationError
from treb.filter import Filter, Lookups
from treb.log import configure_logging, get_logger
from treb.middleware.protocol import Middleware
from treb.routing.discovery import discover_controllers
from treb.routing.dispatcher import Dispatcher
from treb.routing.tree import ControllerTree
from treb.server.handler import handle_request
from treb.services import Services, ViewRenderer
from treb.session import build_session_store
from treb.session.store import SessionStore

logger = get_logger("app")


class App:
    """The treb application.

    Usage::

        app = App(AppConfig(session=SessionConfig(secret_key="...")))
        app.mount_controllers("controllers")

        @app.controller("about")
        class About(Controller):
            @action()
            async def about(self):
                self.title = "About us"

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check so exactly one
        thread builds the runtime state, even when several ASGI workers
        call ``__call__()`` concurrently on the first request.
    """

    __slots__ = (
        "_cache",
        "_controllers",
        "_controller_dirs",
        "_databases",
        "_dispatcher",
        "_environ",
        "_error_handlers",
        "_freeze_lock",
        "_frozen",
        "_lookups",
        "_middleware",
        "_middleware_list",
        "_renderer",
        "_services",
        "_session_store",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
    )

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        lookups: Lookups | Mapping[str, Mapping[Any, Any]] | None = None,
        renderer: ViewRenderer | None = None,
        environ: Mapping[str, str] | None = None,
        cache: Cache | None = None,
        databases: DatabasePools | None = None,
    ) -> None:
        self.config: AppConfig = config or AppConfig()
        self._controllers: list[tuple[str, type[Controller]]] = []
        self._controller_dirs: list[Path] = []
        self._middleware_list: list[Middleware] = []
        self._error_handlers: dict[int | type, Callable[..., Any]] = {}
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._lookups = lookups if isinstance(lookups, Lookups) else Lookups(lookups)
        self._renderer = renderer
        self._environ: dict[str, str] = dict(environ or {})
        self._cache = cache
        self._databases = databases
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

        # Compiled state, set during _freeze()
        self._services: Services | None = None
        self._session_store: SessionStore | None = None
        self._dispatcher: Dispatcher | None = None
        self._middleware: tuple[Callable[..., Any], ...] = ()

    # -- Controller registration --

    def controller(self, location: str) -> Callable[[type[Controller]], type[Controller]]:
        """Register a controller class at ``dir/.../name`` via decorator."""

        def decorator(cls: type[Controller]) -> type[Controller]:
            self._check_not_frozen()
            if not (isinstance(cls, type) and issubclass(cls, Controller)):
                msg = f"@app.controller({location!r}) expects a Controller subclass, got {cls!r}"
                raise ConfigurationError(msg)
            self._controllers.append((location, cls))
            return cls

        return decorator

    def mount_controllers(self, directory: str | Path) -> None:
        """Load every controller file under *directory* when the app freezes."""
        self._check_not_frozen()
        self._controller_dirs.append(Path(directory))

    # -- Error handlers --

    def error(
        self,
        code_or_exception: int | type[Exception],
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register an error handler via decorator.

        The handler may take ``()``, ``(request)`` or ``(request, exc)``
        and return a Response or a string body::

            @app.error(404)
            def missing(request):
                return "Nothing here"
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self._check_not_frozen()
            self._error_handlers[code_or_exception] = func
            return func

        return decorator

    # -- Middleware --

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware to the pipeline."""
        self._check_not_frozen()
        self._middleware_list.append(middleware)

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        before the server begins accepting HTTP requests.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator.

        Hooks run in registration order during ASGI lifespan shutdown;
        database pools and the cache are closed after them.
        """
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- Runtime state --

    @property
    def services(self) -> Services:
        """The shared collaborators; freezes the app on first access."""
        self._ensure_frozen()
        assert self._services is not None
        return self._services

    @property
    def tree(self) -> ControllerTree:
        self._ensure_frozen()
        assert self._dispatcher is not None
        return self._dispatcher.tree

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        self._ensure_frozen()
        assert self._dispatcher is not None
        assert self._services is not None

        await handle_request(
            scope,
            receive,
            send,
            dispatcher=self._dispatcher,
            middleware=self._middleware,
            error_handlers=self._error_handlers,
            services=self._services,
            session_store=self._session_store,
        )

    async def _handle_lifespan(self, scope: Scope, receive: Receive, send: Send) -> None:
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        result = hook()
                        if inspect.isawaitable(result):
                            await result
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    logger.exception("Startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return

            elif msg_type == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def shutdown(self) -> None:
        """Run shutdown hooks, then close database pools and the cache."""
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result
        if self._services is not None:
            await self._services.databases.close()
            await self._services.cache.close()

    # -- Internal --

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = "Cannot modify the app after it has started serving requests."
            raise RuntimeError(msg)

    def _ensure_frozen(self) -> None:
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Build the runtime state. MUST only be called while holding _freeze_lock."""
        config = self.config
        configure_logging(config.log)

        # 1. Controller tree: discovered files first, decorated classes after
        tree = ControllerTree()
        for directory in self._controller_dirs:
            for location, cls in discover_controllers(directory):
                tree.add(location, cls)
        for location, cls in self._controllers:
            tree.add(location, cls)

        # 2. Collaborators
        cache = self._cache if self._cache is not None else build_cache(config.cache)
        databases = (
            self._databases
            if self._databases is not None
            else DatabasePools.from_config(config.databases)
        )
        services = Services(
            config=config,
            cache=cache,
            databases=databases,
            lookups=self._lookups,
            filter=Filter(self._lookups),
            renderer=self._renderer,
        )

        # 3. Sessions need a signing key; without one a session controller fails loudly
        session_store = build_session_store(config, cache) if config.session.secret_key else None
        if session_store is None and any(cls.session for _, cls in _walk(tree)):
            logger.warning("Controllers use sessions but no session secret_key is configured")

        self._services = services
        self._session_store = session_store
        self._dispatcher = Dispatcher(
            tree,
            services,
            session_store=session_store,
            environ=self._environ,
        )
        self._middleware = tuple(self._middleware_list)
        self._frozen = True
        logger.debug("App frozen with controllers: %s", ", ".join(tree.locations()))


def _walk(tree: ControllerTree) -> list[tuple[str, type[Controller]]]:
    found: list[tuple[str, type[Controller]]] = []
    stack = [tree.root]
    while stack:
        node = stack.pop()
        found.extend(node.controllers.items())
        stack.extend(node.dirs.values())
    return found
