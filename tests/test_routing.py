"""Tests for treb.routing — the controller tree, discovery and dispatch."""

import textwrap
from typing import Any

import pytest

from treb.cache import Cache, MemoryBackend
from treb.config import AppConfig, HijackConfig, SecurityConfig, SessionConfig
from treb.context import session_var
from treb.controller import Controller, Lifecycle, action
from treb.errors import ConfigurationError, NotFound
from treb.http.cookies import CookieJar
from treb.http.request import Request
from treb.routing import ControllerTree, Dispatcher, discover_controllers, split_path
from treb.services import Services
from treb.session import SignedCookieSessionStore


class Home(Controller):
    @action()
    async def home(self) -> None:
        self.content = "home"


class About(Controller):
    @action()
    async def about(self) -> None:
        self.content = "about"

    @action()
    async def team(self) -> None:
        self.content = "team"


class Blog(Controller):
    @action()
    async def blog(self) -> None:
        self.content = "blog index"


class Posts(Controller):
    @action()
    async def posts(self) -> None:
        self.content = "posts"

    @action(allow_extra=True, expect={"extra": {"_values": "integer"}})
    async def show(self) -> None:
        self.content = f"post {self.args.extra[0]}"


@pytest.fixture
def tree() -> ControllerTree:
    tree = ControllerTree()
    tree.add("home", Home)
    tree.add("about", About)
    tree.add("blog/blog", Blog)
    tree.add("blog/posts", Posts)
    return tree


class TestSplitPath:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/", []),
            ("", []),
            ("/a", ["a"]),
            ("/a/b/", ["a", "b"]),
            ("/a//b", ["a", "", "b"]),
        ],
    )
    def test_split(self, path: str, expected: list[str]) -> None:
        assert split_path(path) == expected


class TestControllerTree:
    def test_root_is_home(self, tree: ControllerTree) -> None:
        found = tree.resolve("/")
        assert found.controller is Home
        assert (found.name, found.action, found.path, found.extra) == ("home", "home", "", ())

    def test_controller_default_action(self, tree: ControllerTree) -> None:
        found = tree.resolve("/about")
        assert found.controller is About
        assert found.action == "about"

    def test_named_action_case_insensitive(self, tree: ControllerTree) -> None:
        assert tree.resolve("/about/Team").action == "team"

    def test_directory_default_controller(self, tree: ControllerTree) -> None:
        found = tree.resolve("/blog/")
        assert found.controller is Blog
        assert found.path == "/blog"

    def test_nested_controller_with_extra(self, tree: ControllerTree) -> None:
        found = tree.resolve("/blog/posts/show/12/comments")
        assert found.controller is Posts
        assert found.action == "show"
        assert found.extra == ("12", "comments")

    def test_unknown_segment_becomes_extra(self, tree: ControllerTree) -> None:
        found = tree.resolve("/missing")
        assert found.controller is Home
        assert found.extra == ("missing",)

    def test_controller_names_are_exact_case(self, tree: ControllerTree) -> None:
        assert tree.resolve("/About").controller is Home

    def test_directory_without_default_controller(self) -> None:
        tree = ControllerTree()
        tree.add("shop/cart", Home)
        with pytest.raises(NotFound):
            tree.resolve("/shop")
        assert tree.resolve("/shop/cart").controller is Home

    def test_directory_wins_over_same_named_controller(self, tree: ControllerTree) -> None:
        tree.add("blog", About)
        found = tree.resolve("/blog")
        assert found.controller is Blog
        assert found.path == "/blog"
        assert tree.resolve("/blog/posts").controller is Posts

    def test_empty_tree(self) -> None:
        with pytest.raises(NotFound):
            ControllerTree().resolve("/")

    def test_duplicate_location(self, tree: ControllerTree) -> None:
        tree.add("about", About)
        with pytest.raises(ConfigurationError, match="registered twice"):
            tree.add("about", Home)

    def test_empty_location(self) -> None:
        with pytest.raises(ConfigurationError):
            ControllerTree().add("/", Home)

    def test_locations(self, tree: ControllerTree) -> None:
        assert tree.locations() == ["about", "blog/blog", "blog/posts", "home"]


# =============================================================================
# Discovery
# =============================================================================


def write(path, source: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source))


class TestDiscovery:
    def test_walks_directories(self, tmp_path) -> None:
        write(
            tmp_path / "home.py",
            """
            from treb import Controller, action

            class Home(Controller):
                @action()
                async def home(self):
                    self.content = "hi"
            """,
        )
        write(
            tmp_path / "blog" / "posts.py",
            """
            from treb import Controller

            class Posts(Controller):
                pass
            """,
        )
        write(tmp_path / "_shared.py", "VALUE = 1\n")
        write(tmp_path / "notes.txt", "not python\n")

        found = discover_controllers(tmp_path)
        assert [(location, cls.__name__) for location, cls in found] == [
            ("home", "Home"),
            ("blog/posts", "Posts"),
        ]
        assert "home" in found[0][1].actions

    def test_picks_class_named_after_file(self, tmp_path) -> None:
        write(
            tmp_path / "posts.py",
            """
            from treb import Controller

            class Base(Controller):
                pass

            class PostsController(Base):
                pass
            """,
        )
        ((location, cls),) = discover_controllers(tmp_path)
        assert location == "posts"
        assert cls.__name__ == "PostsController"

    def test_no_controller(self, tmp_path) -> None:
        write(tmp_path / "empty.py", "X = 1\n")
        with pytest.raises(ConfigurationError, match="defines no Controller"):
            discover_controllers(tmp_path)

    def test_ambiguous(self, tmp_path) -> None:
        write(
            tmp_path / "page.py",
            """
            from treb import Controller

            class One(Controller):
                pass

            class Two(Controller):
                pass
            """,
        )
        with pytest.raises(ConfigurationError, match="several controllers"):
            discover_controllers(tmp_path)

    def test_missing_directory(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            discover_controllers(tmp_path / "nope")


# =============================================================================
# Dispatcher
# =============================================================================


def make_request(path: str, *, query: bytes = b"", headers: dict[str, str] | None = None) -> Request:
    raw = tuple((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items())
    scope: dict[str, Any] = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": query,
        "headers": raw,
        "client": ("10.0.0.9", 1234),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request.from_asgi(scope, receive)


class Recorder(Controller):
    session = True
    seen: list[Lifecycle] = []

    async def init(self) -> None:
        type(self).seen.append(self.state)
        self.add_css("example")

    @action(expect={"get": {"page": "integer"}})
    async def recorder(self) -> None:
        type(self).seen.append(self.state)
        self.content = f"page {self.args.get['page']}"


class TestDispatcher:
    @pytest.fixture
    def services(self) -> Services:
        config = AppConfig(security=SecurityConfig(hijack=HijackConfig(salt="pepper")))
        return Services(config=config, cache=Cache(MemoryBackend()))

    async def test_lifecycle_order(self, services: Services) -> None:
        Recorder.seen = []
        tree = ControllerTree()
        tree.add("recorder", Recorder)
        store = SignedCookieSessionStore(SessionConfig(secret_key="k"))
        dispatcher = Dispatcher(tree, services, session_store=store)

        token = session_var.set(None)
        try:
            response = await dispatcher.dispatch(make_request("/recorder", query=b"page=3x"), CookieJar())
            session = session_var.get()
        finally:
            session_var.reset(token)

        assert Recorder.seen == [Lifecycle.SESSION_READY, Lifecycle.INITIALIZED]
        assert response.text == "page 3"
        assert session is not None
        assert "hijack" in session

    async def test_session_without_store(self, services: Services) -> None:
        tree = ControllerTree()
        tree.add("recorder", Recorder)
        dispatcher = Dispatcher(tree, services)
        with pytest.raises(ConfigurationError, match="secret_key"):
            await dispatcher.dispatch(make_request("/recorder"), CookieJar())

    async def test_extra_segments_refused_after_init(self, tree: ControllerTree, services: Services) -> None:
        seen: list[str] = []

        class Strict(Controller):
            async def init(self) -> None:
                seen.append(self.path)

            @action()
            async def strict(self) -> None:
                self.content = "never"

        tree.add("strict", Strict)
        dispatcher = Dispatcher(tree, services)
        with pytest.raises(NotFound):
            await dispatcher.dispatch(make_request("/strict/oops"), CookieJar())
        assert seen == [""]

    async def test_extra_allowed_and_sanitized(self, tree: ControllerTree, services: Services) -> None:
        dispatcher = Dispatcher(tree, services)
        response = await dispatcher.dispatch(make_request("/blog/posts/show/12abc"), CookieJar())
        assert response.text == "post 12"

    async def test_missing_action_is_not_found(self, services: Services) -> None:
        class NoDefault(Controller):
            @action()
            async def other(self) -> None:
                pass

        tree = ControllerTree()
        tree.add("nodefault", NoDefault)
        with pytest.raises(NotFound):
            await Dispatcher(tree, services).dispatch(make_request("/nodefault"), CookieJar())

    async def test_environment_source(self, services: Services) -> None:
        class Env(Controller):
            @action(expect={"env": {"STAGE": "enum:dev,prod"}})
            async def env(self) -> None:
                self.content = self.args.env["STAGE"]

        tree = ControllerTree()
        tree.add("env", Env)
        dispatcher = Dispatcher(tree, services, environ={"STAGE": "prod"})
        response = await dispatcher.dispatch(make_request("/env"), CookieJar())
        assert response.text == "prod"
