"""Tests for treb.http — requests, query/form nesting, cookies and responses."""

from typing import Any

import pytest

from treb.config import CookieConfig
from treb.http.cookies import CookieJar, SetCookie, parse_cookies, prefixed
from treb.http.headers import Headers
from treb.http.nesting import nest
from treb.http.query import QueryParams
from treb.http.request import UNKNOWN_AGENT, UNKNOWN_IP, Request
from treb.http.response import Response, StreamingResponse


def make_request(
    method: str = "GET",
    path: str = "/",
    *,
    query: bytes = b"",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    client: tuple[str, int] | None = ("10.0.0.1", 5000),
) -> Request:
    raw = tuple((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items())
    scope: dict[str, Any] = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": raw,
        "server": ("example.org", 8080),
        "client": client,
    }
    sent = False

    async def receive() -> dict[str, Any]:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request.from_asgi(scope, receive)


# =============================================================================
# Bracket nesting
# =============================================================================


class TestNest:
    def test_plain_names(self) -> None:
        assert nest([("a", "1"), ("b", "2")]) == {"a": "1", "b": "2"}

    def test_appends(self) -> None:
        assert nest([("ids[]", "1"), ("ids[]", "2")]) == {"ids": ["1", "2"]}

    def test_named_keys(self) -> None:
        assert nest([("work[3][name]", "Bob")]) == {"work": {"3": {"name": "Bob"}}}

    def test_list_of_records(self) -> None:
        pairs = [("rows[][x]", "1"), ("rows[][x]", "2")]
        assert nest(pairs) == {"rows": [{"x": "1"}, {"x": "2"}]}

    def test_named_key_after_appends(self) -> None:
        assert nest([("a[]", "1"), ("a[k]", "2")]) == {"a": {"0": "1", "k": "2"}}

    def test_append_to_keyed(self) -> None:
        assert nest([("a[5]", "x"), ("a[]", "y")]) == {"a": {"5": "x", "6": "y"}}

    def test_append_ignores_non_ascii_digit_keys(self) -> None:
        assert nest([("a[²]", "1"), ("a[]", "2")]) == {"a": {"²": "1", "0": "2"}}

    def test_append_ignores_oversized_digit_keys(self) -> None:
        huge = "9" * 5000
        assert nest([(f"a[{huge}]", "1"), ("a[]", "2")]) == {"a": {huge: "1", "0": "2"}}

    def test_malformed_kept_verbatim(self) -> None:
        assert nest([("a[b", "1")]) == {"a[b": "1"}

    def test_later_scalar_wins(self) -> None:
        assert nest([("a", "1"), ("a", "2")]) == {"a": "2"}


class TestQueryParams:
    def test_first_value_and_lists(self) -> None:
        q = QueryParams(b"a=1&a=2&b=")
        assert q["a"] == "1"
        assert q.get_list("a") == ["1", "2"]
        assert q["b"] == ""
        assert q.get("missing") is None
        assert list(q) == ["a", "b"]

    def test_nested(self) -> None:
        q = QueryParams(b"tags%5B%5D=x&tags%5B%5D=y")
        assert q.nested() == {"tags": ["x", "y"]}

    def test_raw(self) -> None:
        assert QueryParams(b"a=1&b=2").raw == "a=1&b=2"


class TestHeaders:
    def test_case_insensitive(self) -> None:
        h = Headers(((b"Content-Type", b"text/html"),))
        assert h["content-type"] == "text/html"
        assert "CONTENT-TYPE" in h

    def test_cgi_variables(self) -> None:
        h = Headers(
            (
                (b"user-agent", b"curl/8"),
                (b"content-type", b"text/plain"),
                (b"accept", b"a"),
                (b"accept", b"b"),
            )
        )
        assert h.cgi_variables() == {
            "HTTP_USER_AGENT": "curl/8",
            "CONTENT_TYPE": "text/plain",
            "HTTP_ACCEPT": "a, b",
        }


# =============================================================================
# Request
# =============================================================================


class TestRequest:
    def test_basic_fields(self) -> None:
        req = make_request(path="/blog/posts", query=b"page=2")
        assert req.method == "GET"
        assert req.path == "/blog/posts"
        assert req.url == "/blog/posts?page=2"
        assert req.url_stub == "/blog/posts"
        assert not req.is_post

    def test_client_ip_prefers_last_forwarded_hop(self) -> None:
        req = make_request(headers={"X-Forwarded-For": "1.1.1.1, 2.2.2.2"})
        assert req.client_ip == "2.2.2.2"

    def test_client_ip_fallbacks(self) -> None:
        assert make_request().client_ip == "10.0.0.1"
        assert make_request(client=None).client_ip == UNKNOWN_IP

    def test_user_agent(self) -> None:
        assert make_request(headers={"User-Agent": "UA/1"}).user_agent == "UA/1"
        assert make_request().user_agent == UNKNOWN_AGENT

    def test_is_ajax(self) -> None:
        assert make_request(headers={"X-Requested-With": "XMLHttpRequest"}).is_ajax
        assert not make_request().is_ajax

    def test_cookies_parsed(self) -> None:
        req = make_request(headers={"Cookie": "a=1; b=hello%20world"})
        assert req.cookies == {"a": "1", "b": "hello world"}

    def test_server_variables(self) -> None:
        req = make_request(path="/x", query=b"q=1", headers={"Host": "site.test:8080", "User-Agent": "UA"})
        server = req.server_variables()
        assert server["REQUEST_METHOD"] == "GET"
        assert server["REQUEST_URI"] == "/x?q=1"
        assert server["QUERY_STRING"] == "q=1"
        assert server["SERVER_NAME"] == "site.test"
        assert server["SERVER_PORT"] == "8080"
        assert server["REMOTE_ADDR"] == "10.0.0.1"
        assert server["HTTP_USER_AGENT"] == "UA"

    async def test_post_data_form(self) -> None:
        req = make_request(
            "POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            body=b"name=Al&tags%5B%5D=a&tags%5B%5D=b",
        )
        assert await req.post_data() == {"name": "Al", "tags": ["a", "b"]}

    async def test_post_data_json(self) -> None:
        req = make_request("POST", headers={"Content-Type": "application/json"}, body=b'{"a": [1, 2]}')
        assert await req.post_data() == {"a": [1, 2]}

    async def test_post_data_malformed_json(self) -> None:
        req = make_request("POST", headers={"Content-Type": "application/json"}, body=b"{nope")
        assert await req.post_data() == {}

    async def test_post_data_multipart_keeps_files_apart(self) -> None:
        pytest.importorskip("multipart")
        body = (
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="tags[]"\r\n\r\n'
            b"a\r\n"
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="avatar"; filename="me.png"\r\n'
            b"Content-Type: image/png\r\n\r\n"
            b"PNG\r\n"
            b"--XyZ--\r\n"
        )
        req = make_request("POST", headers={"Content-Type": "multipart/form-data; boundary=XyZ"}, body=body)
        assert await req.post_data() == {"tags": ["a"]}
        form = await req.form()
        assert form.files["avatar"].filename == "me.png"
        assert await form.files["avatar"].read() == b"PNG"

    async def test_post_data_multipart_without_boundary(self) -> None:
        pytest.importorskip("multipart")
        req = make_request("POST", headers={"Content-Type": "multipart/form-data"}, body=b"--x\r\n")
        assert await req.post_data() == {}

    async def test_post_data_ignored_for_get(self) -> None:
        req = make_request("GET", headers={"Content-Type": "application/json"}, body=b'{"a": 1}')
        assert await req.post_data() == {}

    async def test_body_cached(self) -> None:
        req = make_request("POST", body=b"abc")
        assert await req.body() == b"abc"
        assert await req.body() == b"abc"


# =============================================================================
# Cookies
# =============================================================================


class TestCookies:
    def test_parse(self) -> None:
        assert parse_cookies('a=1; b="2"; junk') == {"a": "1", "b": "2"}
        assert parse_cookies("") == {}

    def test_prefixed(self) -> None:
        assert prefixed("user", "app") == "app_user"
        assert prefixed("user", "") == "user"

    def test_set_cookie_header(self) -> None:
        header = SetCookie("a", "x y", max_age=60, domain="example.org", secure=True).to_header_value()
        assert header.startswith("a=x%20y; ")
        assert "Max-Age=60" in header
        assert "Domain=example.org" in header
        assert "Secure" in header
        assert "HttpOnly" in header
        assert "SameSite=lax" in header


class TestCookieJar:
    def test_prefix_applies_to_get_and_set(self) -> None:
        jar = CookieJar({"app_theme": "dark"}, config=CookieConfig(prefix="app"))
        assert jar.get("theme") == "dark"
        cookie = jar.set("lang", "en")
        assert cookie.name == "app_lang"
        assert jar.get("lang") == "en"

    def test_explicit_empty_prefix(self) -> None:
        jar = CookieJar({"raw": "1"}, config=CookieConfig(prefix="app"))
        assert jar.get("raw", prefix="") == "1"

    def test_session_cookie_has_no_expiry(self) -> None:
        cookie = CookieJar().set("a", "1")
        assert cookie.max_age is None
        assert cookie.expires is None

    def test_expiring_cookie(self) -> None:
        cookie = CookieJar().set("a", "1", expire=3600)
        assert cookie.max_age == 3600
        assert cookie.expires is not None

    def test_delete_hides_incoming(self) -> None:
        jar = CookieJar({"a": "1"})
        deleted = jar.delete("a")
        assert deleted.max_age == 0
        assert deleted.value == ""
        assert jar.get("a") is None
        assert jar.get("a", default="gone") == "gone"

    def test_last_directive_wins(self) -> None:
        jar = CookieJar()
        jar.set("a", "1")
        jar.set("a", "2")
        assert len(jar) == 1
        assert jar.pending()[0].value == "2"

    def test_domain_and_security_defaults(self) -> None:
        jar = CookieJar(config=CookieConfig(secure=True, samesite="strict"), domain="example.org")
        cookie = jar.set("a", "1")
        assert cookie.secure
        assert cookie.domain == "example.org"
        assert cookie.samesite == "strict"


# =============================================================================
# Responses
# =============================================================================


class TestResponse:
    def test_chaining_is_immutable(self) -> None:
        base = Response("hi")
        changed = base.with_status(404).with_header("X-A", "1").with_content_type("text/plain")
        assert base.status == 200
        assert changed.status == 404
        assert changed.header("x-a") == "1"
        assert changed.content_type == "text/plain"

    def test_with_headers_mapping(self) -> None:
        response = Response().with_headers({"A": "1", "B": "2"})
        assert response.headers == (("A", "1"), ("B", "2"))

    def test_with_cookies(self) -> None:
        cookie = SetCookie("a", "1")
        assert Response().with_cookies([cookie]).cookies == (cookie,)

    def test_body_conversions(self) -> None:
        assert Response("é").body_bytes == "é".encode()
        assert Response(b"abc").text == "abc"

    def test_streaming_supports_same_api(self) -> None:
        stream = StreamingResponse(iter(["a"])).with_status(201).with_header("X", "1")
        assert stream.status == 201
        assert stream.headers == (("X", "1"),)


@pytest.mark.parametrize("header", ["", "   "])
def test_blank_cookie_header(header: str) -> None:
    assert parse_cookies(header) == {}
