"""Request dispatch: path to controller, then the controller lifecycle.

``Dispatcher.dispatch()`` resolves the path against the controller
tree and drives the controller through ``Lifecycle`` in order::

    Created -> Sanitized -> (SessionReady) -> Initialized -> Executed -> Rendered -> Done

Any exception ends the request at that point; the server pipeline
turns it into an error page. Extra path segments are checked after
``init`` has run, so ``init`` may inspect them before the request is
refused.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from treb._internal.invoke import invoke
from treb.context import session_var
from treb.controller import Controller, Lifecycle
from treb.errors import ConfigurationError, NotFound
from treb.log import get_logger
from treb.session.hijack import protect

if TYPE_CHECKING:
    from treb.http.cookies import CookieJar
    from treb.http.request import Request
    from treb.http.response import AnyResponse
    from treb.routing.tree import ControllerTree
    from treb.services import Services
    from treb.session.store import SessionStore

logger = get_logger("dispatch")


class Dispatcher:
    __slots__ = ("environ", "services", "session_store", "tree")

    def __init__(
        self,
        tree: ControllerTree,
        services: Services,
        *,
        session_store: SessionStore | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.tree = tree
        self.services = services
        self.session_store = session_store
        self.environ = dict(environ or {})

    async def sources(
        self,
        request: Request,
        extra: tuple[str, ...],
        wanted: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Raw input sources; the body is only read when ``post`` is declared."""
        return {
            "post": await request.post_data() if "post" in wanted else {},
            "get": request.query.nested(),
            "cookie": dict(request.cookies),
            "env": self.environ,
            "server": request.server_variables(),
            "extra": list(extra),
        }

    async def dispatch(self, request: Request, cookies: CookieJar) -> AnyResponse:
        resolution = self.tree.resolve(request.path)
        logger.debug(
            "%s %s -> %s/%s:%s extra=%r",
            request.method,
            request.path,
            resolution.path,
            resolution.name,
            resolution.action,
            resolution.extra,
        )
        controller = resolution.controller(
            resolution.name,
            resolution.action,
            resolution.path,
            request=request,
            services=self.services,
            cookies=cookies,
        )

        spec = controller.actions.get(controller.action)
        expectations = spec.expectations if spec is not None else {}
        controller.sanitize(await self.sources(request, resolution.extra, expectations))

        if controller.session:
            await self._start_session(controller, request, cookies)

        init = getattr(controller, "init", None)
        if callable(init):
            await invoke(init)
        controller.state = Lifecycle.INITIALIZED

        if resolution.extra and not controller.allows_extra():
            raise NotFound
        if spec is None:
            raise NotFound

        await controller.execute()
        response = await controller.render()
        controller.state = Lifecycle.DONE
        return response

    async def _start_session(self, controller: Controller, request: Request, cookies: CookieJar) -> None:
        if self.session_store is None:
            msg = f"{type(controller).__qualname__} needs a session but no session secret_key is configured"
            raise ConfigurationError(msg)
        session = await self.session_store.load(cookies)
        # Registered before the hijack check so a reset session is still saved
        session_var.set(session)
        controller.session_data = session
        protect(session, request, cookies, self.services.config.security.hijack)
        controller.state = Lifecycle.SESSION_READY
