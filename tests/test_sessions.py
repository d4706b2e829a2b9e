"""Tests for treb.session — session data, stores and anti-hijacking."""

import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from treb.cache import Cache, MemoryBackend
from treb.config import AppConfig, HijackConfig, SessionConfig
from treb.errors import ConfigurationError, SessionIntegrityViolation
from treb.http.cookies import CookieJar
from treb.http.request import Request
from treb.session import (
    CacheSessionStore,
    Session,
    SignedCookieSessionStore,
    build_session_store,
    hijack_token,
    protect,
)

STARTED = datetime(2024, 1, 1, tzinfo=UTC)


def request_with(headers: dict[str, str] | None = None) -> Request:
    raw = tuple((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items())
    scope: dict[str, Any] = {"type": "http", "method": "GET", "path": "/", "headers": raw}

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request.from_asgi(scope, receive)


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Session
# =============================================================================


class TestSession:
    def test_change_tracking(self) -> None:
        session = Session({"a": 1})
        assert not session.modified
        assert session["a"] == 1
        session["b"] = 2
        assert session.modified
        assert session.to_dict() == {"a": 1, "b": 2}

    def test_touch(self) -> None:
        session = Session({"cart": []})
        session["cart"].append(1)
        assert not session.modified
        session.touch()
        assert session.modified

    def test_regenerate_remembers_old_id(self) -> None:
        session = Session({"a": 1}, sid="abc")
        session.regenerate()
        assert len(session) == 0
        assert session.sid is None
        assert session.previous_sid == "abc"


class TestCsrfTokens:
    def test_token_reused_while_live(self) -> None:
        clock = Clock()
        session = Session(clock=clock, csrf_ttl=100)
        token = session.generate_token("profile")
        clock.now += 50
        assert session.generate_token("profile") == token
        assert session.check_token("profile", token)

    def test_forms_have_separate_tokens(self) -> None:
        session = Session()
        assert session.generate_token("a") != session.generate_token("b")

    def test_token_expires(self) -> None:
        clock = Clock()
        session = Session(clock=clock, csrf_ttl=100)
        token = session.generate_token()
        clock.now += 100
        assert not session.check_token("csrf", token)
        clock.now += 1
        assert session.generate_token() != token

    def test_check_rejects_wrong_or_missing(self) -> None:
        session = Session()
        token = session.generate_token()
        assert not session.check_token("csrf", token + "x")
        assert not session.check_token("csrf", None)
        assert not session.check_token("other", token)


class TestFlashMessages:
    def test_message_read_once(self) -> None:
        session = Session()
        session.set_message("Saved!")
        assert session.get_message() == "Saved!"
        assert session.get_message() is None
        assert "messages" not in session

    def test_peek_without_purge(self) -> None:
        session = Session()
        session.set_message("Careful", "warning")
        assert session.get_message("warning", purge=False) == "Careful"
        assert session.get_message("info") is None
        assert session.get_message("warning") == "Careful"


# =============================================================================
# Stores
# =============================================================================


class TestSignedCookieStore:
    def test_requires_secret(self) -> None:
        with pytest.raises(ConfigurationError, match="secret_key"):
            SignedCookieSessionStore(SessionConfig())

    async def test_round_trip(self) -> None:
        store = SignedCookieSessionStore(SessionConfig(secret_key="s3cret"))
        jar = CookieJar()
        session = await store.load(jar)
        assert len(session) == 0
        session["user"] = 7
        await store.save(session, jar)

        (cookie,) = jar.pending()
        assert cookie.name == "SESSID"
        loaded = await store.load(CookieJar({"SESSID": cookie.value}))
        assert loaded["user"] == 7

    async def test_tampered_cookie_gives_empty_session(self) -> None:
        store = SignedCookieSessionStore(SessionConfig(secret_key="s3cret"))
        jar = CookieJar()
        session = await store.load(jar)
        session["user"] = 7
        await store.save(session, jar)

        forged = jar.pending()[0].value + "x"
        assert len(await store.load(CookieJar({"SESSID": forged}))) == 0

    async def test_other_key_rejected(self) -> None:
        jar = CookieJar()
        writer = SignedCookieSessionStore(SessionConfig(secret_key="one"))
        session = await writer.load(jar)
        session["a"] = 1
        await writer.save(session, jar)

        reader = SignedCookieSessionStore(SessionConfig(secret_key="two"))
        assert len(await reader.load(CookieJar({"SESSID": jar.pending()[0].value}))) == 0

    async def test_untouched_empty_session_sets_nothing(self) -> None:
        store = SignedCookieSessionStore(SessionConfig(secret_key="s3cret"))
        jar = CookieJar()
        await store.save(await store.load(jar), jar)
        assert len(jar) == 0

    async def test_cleared_session_deletes_cookie(self) -> None:
        store = SignedCookieSessionStore(SessionConfig(secret_key="s3cret"))
        jar = CookieJar({"SESSID": "stale"})
        await store.save(Session(), jar)
        assert jar.pending()[0].max_age == 0

    async def test_cookie_ignores_prefix(self) -> None:
        from treb.config import CookieConfig

        store = SignedCookieSessionStore(SessionConfig(secret_key="s3cret"))
        jar = CookieJar(config=CookieConfig(prefix="app"))
        await store.save(Session({"a": 1}), jar)
        assert jar.pending()[0].name == "SESSID"


class TestCacheStore:
    @pytest.fixture
    def cache(self) -> Cache:
        return Cache(MemoryBackend())

    async def test_data_kept_in_cache(self, cache: Cache) -> None:
        store = CacheSessionStore(SessionConfig(secret_key="s3cret", store="cache"), cache)
        jar = CookieJar()
        session = await store.load(jar)
        session["user"] = 7
        await store.save(session, jar)

        assert session.sid is not None
        assert await cache.get(f"session:{session.sid}") == {"user": 7}

        loaded = await store.load(CookieJar({"SESSID": jar.pending()[0].value}))
        assert loaded.sid == session.sid
        assert loaded["user"] == 7

    async def test_evicted_data_starts_over(self, cache: Cache) -> None:
        store = CacheSessionStore(SessionConfig(secret_key="s3cret"), cache)
        jar = CookieJar()
        session = Session({"user": 7})
        await store.save(session, jar)
        await cache.delete(f"session:{session.sid}")

        loaded = await store.load(CookieJar({"SESSID": jar.pending()[0].value}))
        assert loaded.sid is None
        assert len(loaded) == 0

    async def test_regenerate_drops_old_entry(self, cache: Cache) -> None:
        store = CacheSessionStore(SessionConfig(secret_key="s3cret"), cache)
        session = Session({"user": 7})
        await store.save(session, CookieJar())
        old = session.sid

        session.regenerate()
        session["user"] = 8
        await store.save(session, CookieJar())
        assert session.sid != old
        assert await cache.get(f"session:{old}") is None
        assert await cache.get(f"session:{session.sid}") == {"user": 8}


class TestBuildSessionStore:
    def test_cookie(self) -> None:
        config = AppConfig(session=SessionConfig(secret_key="k"))
        assert isinstance(build_session_store(config, Cache(MemoryBackend())), SignedCookieSessionStore)

    def test_cache(self) -> None:
        config = AppConfig(session=SessionConfig(secret_key="k", store="cache"))
        assert isinstance(build_session_store(config, Cache(MemoryBackend())), CacheSessionStore)

    def test_unknown(self) -> None:
        config = AppConfig(session=SessionConfig(secret_key="k", store="files"))
        with pytest.raises(ConfigurationError, match="Unknown session store"):
            build_session_store(config, Cache(MemoryBackend()))


# =============================================================================
# Anti-hijacking
# =============================================================================


class TestHijackProtection:
    config = HijackConfig(salt="pepper")

    def test_new_session_gets_token(self) -> None:
        session = Session()
        jar = CookieJar()
        protect(session, request_with({"User-Agent": "UA/1"}), jar, self.config, now=lambda: STARTED)

        token = hijack_token("UA/1", "pepper", STARTED.isoformat(timespec="seconds"))
        assert session["started"] == "2024-01-01T00:00:00+00:00"
        assert session["hijack"] == token
        assert jar.get("MyVoiceIsMyPassport") == token

    def test_matching_tokens_pass(self) -> None:
        started = STARTED.isoformat(timespec="seconds")
        token = hijack_token("UA/1", "pepper", started)
        session = Session({"started": started, "hijack": token, "user": 7})
        jar = CookieJar({"MyVoiceIsMyPassport": token})

        protect(session, request_with({"User-Agent": "UA/1"}), jar, self.config)
        assert session["user"] == 7
        assert len(jar) == 0

    def test_changed_agent_is_refused(self, caplog: pytest.LogCaptureFixture) -> None:
        started = STARTED.isoformat(timespec="seconds")
        token = hijack_token("UA/1", "pepper", started)
        session = Session({"started": started, "hijack": token, "user": 7})
        jar = CookieJar({"MyVoiceIsMyPassport": token})

        with caplog.at_level(logging.WARNING, logger="treb.hijack"):
            with pytest.raises(SessionIntegrityViolation) as info:
                protect(session, request_with({"User-Agent": "Evil/2"}), jar, self.config)

        assert info.value.status == 302
        assert len(session) == 0
        assert jar.pending()[0].max_age == 0
        assert any(r.name == "treb.hijack" and r.levelno == logging.WARNING for r in caplog.records)

    def test_missing_cookie_refused_for_ajax(self) -> None:
        session = Session({"started": "x", "hijack": "y"})
        request = request_with({"X-Requested-With": "XMLHttpRequest"})
        with pytest.raises(SessionIntegrityViolation) as info:
            protect(session, request, CookieJar(), self.config)
        assert info.value.status == 403

    def test_disabled(self) -> None:
        session = Session({"user": 7})
        protect(session, request_with(), CookieJar(), HijackConfig(disable=True))
        assert session.to_dict() == {"user": 7}

    def test_blank_salt_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="treb.session"):
            protect(Session(), request_with(), CookieJar(), HijackConfig())
        assert "salt left blank" in caplog.text
