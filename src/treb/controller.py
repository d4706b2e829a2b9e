"""Controllers: request-scoped handlers with declared actions.

A controller is a class; its actions are methods marked with
``@action``. The decorator records the action name, the input schema
for each source and whether trailing path segments are accepted; the
table is built once, when the class is created, and schemas are
compiled then, so a bad schema fails at import time instead of on the
first request::

    class Posts(Controller):
        session = True

        @action(expect={"get": {"page": "integer"}})
        async def posts(self):
            self.data["page"] = self.args.get["page"]

        @action(name="show", allow_extra=True, expect={"extra": {"_values": "integer"}})
        async def show(self):
            post = await Post.load(self.services, self.args.extra[0])
            self.data["post"] = post.data

Instances live for one request and move through ``Lifecycle`` in order;
the dispatcher drives the transitions.
"""

from __future__ import annotations

import enum
import inspect
import json
from collections.abc import AsyncIterator, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from treb._internal.invoke import invoke
from treb.errors import ConfigurationError, Redirect
from treb.filter import Rule, SanitizedArgs, compile_expectations
from treb.http.response import AnyResponse, Response, StreamingResponse
from treb.storage import Storage

if TYPE_CHECKING:
    from treb.http.cookies import CookieJar, SetCookie
    from treb.http.request import Request
    from treb.services import Services
    from treb.session.session import Session

_ACTION_ATTR = "__treb_action__"

CONTENT_TYPES = {
    "html": "text/html",
    "text": "text/plain",
    "json": "application/json",
    "rss": "application/rss+xml",
    "xml": "text/xml",
    "png": "image/png",
}
BINARY_MODES = frozenset({"png"})

NO_CACHE_HEADERS = (
    (
        "Cache-Control",
        "no-cache, no-store, must-revalidate, pre-check=0, post-check=0, max-age=0",
    ),
    ("Pragma", "no-cache"),
    ("Expires", "Fri, 03 Dec 1973 08:08:08 GMT"),
)


class Lifecycle(enum.Enum):
    CREATED = "created"
    SANITIZED = "sanitized"
    SESSION_READY = "session_ready"
    INITIALIZED = "initialized"
    EXECUTED = "executed"
    RENDERED = "rendered"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class ActionSpec:
    """One entry of a controller's action table."""

    name: str
    method: str
    expectations: Mapping[str, Rule]
    allow_extra: bool = False


@dataclass(frozen=True, slots=True)
class Link:
    rel: str
    href: str
    type: str | None = None
    title: str | None = None


@dataclass(frozen=True, slots=True)
class Meta:
    name: str
    content: str
    property: bool = False


def action[F: Callable[..., Any]](
    func: F | None = None,
    *,
    name: str | None = None,
    expect: Mapping[str, Any] | None = None,
    allow_extra: bool = False,
) -> Any:
    """Mark a controller method as an action.

    ``name`` defaults to the method name; matching against the URL is
    case-insensitive. ``expect`` maps input sources (post, get, cookie,
    env, server, extra) to schemas.
    """

    def decorator(method: F) -> F:
        setattr(method, _ACTION_ATTR, (name or method.__name__, dict(expect or {}), allow_extra))
        return method

    if func is not None:
        return decorator(func)
    return decorator


class Controller:
    """Base class for request handlers.

    Class attributes configure behavior for every action; instance
    attributes of the same name may be changed per request inside
    ``init`` or an action.
    """

    actions: ClassVar[Mapping[str, ActionSpec]] = {}
    session: ClassVar[bool] = False

    template: str | None = "default"
    mode: str = "html"
    cacheable: bool = False
    prevent_clickjack: bool = True
    title: str = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        table: dict[str, ActionSpec] = dict(cls.actions)
        for attr, member in cls.__dict__.items():
            marker = getattr(member, _ACTION_ATTR, None)
            if marker is None:
                continue
            action_name, expect, allow_extra = marker
            key = action_name.lower()
            where = f"{cls.__qualname__}.{attr}"
            if key in table and table[key].method != attr and table[key].method in cls.__dict__:
                msg = f"{where}: action {key!r} is already declared by {table[key].method}"
                raise ConfigurationError(msg)
            table[key] = ActionSpec(
                name=key,
                method=attr,
                expectations=compile_expectations(expect, where=f"{where}.expect"),
                allow_extra=allow_extra,
            )
        cls.actions = table

    def __init__(
        self,
        name: str,
        action: str,
        path: str,
        *,
        request: Request,
        services: Services,
        cookies: CookieJar,
    ) -> None:
        self.name = name.lower()
        self.action = self.view = action.lower()
        self.path = path
        self.request = request
        self.services = services
        self.cookies = cookies
        self.args = SanitizedArgs()
        self.data = Storage()
        self.externals: dict[str, dict[str, list[str]]] = {"js": {}, "css": {}}
        self.links: list[Link] = []
        self.meta: dict[str, Meta] = {}
        self.content: Any = None
        self.session_data: Session | None = None
        self.state = Lifecycle.CREATED

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path or '/'}:{self.action} {self.state.value}>"

    # -- Lifecycle steps (driven by the dispatcher) --

    def sanitize(self, sources: Mapping[str, Any]) -> None:
        """Clean the raw input sources against the current action's schema."""
        spec = self.actions.get(self.action)
        expectations = spec.expectations if spec is not None else {}
        self.args = self.services.filter.sanitize_sources(sources, expectations)
        self.state = Lifecycle.SANITIZED

    def allows_extra(self) -> bool:
        spec = self.actions.get(self.action)
        return spec is not None and spec.allow_extra

    async def execute(self) -> Any:
        spec = self.actions[self.action]
        result = await invoke(getattr(self, spec.method))
        self.state = Lifecycle.EXECUTED
        return result

    # -- Page metadata --

    def add_js(self, files: str | Iterable[str], sub: str = "normal") -> None:
        self.add_external(files, "js", sub)

    def add_css(self, files: str | Iterable[str], sub: str = "normal") -> None:
        self.add_external(files, "css", sub)

    def add_external(self, files: str | Iterable[str], type: str, sub: str = "normal") -> None:
        """Append files to ``externals[type][sub]``, skipping ones already listed."""
        group = self.externals.setdefault(type, {}).setdefault(sub, [])
        for file in [files] if isinstance(files, str) else files:
            if file not in group:
                group.append(file)

    def add_link(self, rel: str, href: str, type: str | None = None, title: str | None = None) -> None:
        self.links.append(Link(rel, href, type, title))

    def add_meta(self, name: str, content: str, property: bool = False) -> None:
        self.meta[name] = Meta(name, content, property)

    # -- Request helpers --

    def set_cookie(self, name: str, value: str, expire: int = 0, **options: Any) -> SetCookie:
        return self.cookies.set(name, value, expire, **options)

    def delete_cookie(self, name: str, **options: Any) -> SetCookie:
        return self.cookies.delete(name, **options)

    def redirect(self, url: str = "/", permanent: bool = False) -> None:
        """Stop the action and send the client to *url*."""
        raise Redirect(url, permanent=permanent)

    # -- Rendering --

    @property
    def view_name(self) -> str:
        """View to render, qualified by the controller's directory."""
        return f"{self.path.strip('/')}/{self.view}".lstrip("/")

    def view_context(self) -> dict[str, Any]:
        """Everything a view renderer gets to see."""
        return {
            **self.data.to_dict(),
            "title": self.title,
            "template": self.template,
            "externals": self.externals,
            "links": list(self.links),
            "meta": dict(self.meta),
            "controller": self.name,
            "action": self.action,
        }

    def headers(self) -> tuple[tuple[str, str], ...]:
        headers: list[tuple[str, str]] = []
        if self.mode == "html" and self.prevent_clickjack:
            headers.append(("X-Frame-Options", "DENY"))
        if not self.cacheable:
            headers.extend(NO_CACHE_HEADERS)
        return tuple(headers)

    def content_type(self) -> str:
        charset = self.services.config.env.charset.strip()
        media = CONTENT_TYPES.get(self.mode, "text/html")
        if self.mode in BINARY_MODES:
            return media
        return f"{media}; charset={charset}"

    def body(self) -> Any:
        content = self.content
        if content is None:
            return ""
        if isinstance(content, (str, bytes)):
            return content
        if _is_stream(content):
            return content
        if self.mode == "json":
            return json.dumps(content, default=str)
        return str(content)

    async def render(self) -> AnyResponse:
        """Build the response: headers from the mode, body from the view or content."""
        renderer = self.services.renderer
        if self.view and renderer is not None:
            body = await invoke(renderer, self.view_name, self.view_context())
        else:
            body = self.body()

        headers = self.headers()
        content_type = self.content_type()
        if _is_stream(body):
            response: AnyResponse = StreamingResponse(
                chunks=body, content_type=content_type, headers=headers
            )
        else:
            response = Response(body=body, content_type=content_type, headers=headers)
        self.state = Lifecycle.RENDERED
        return response


def _is_stream(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, Mapping, list, tuple)):
        return False
    return isinstance(value, (Iterator, AsyncIterator)) or inspect.isasyncgen(value)
