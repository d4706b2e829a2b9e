"""Session storage.

``SignedCookieSessionStore`` keeps the whole session in a cookie, signed
(not encrypted) with ``itsdangerous``. ``CacheSessionStore`` keeps data
in the cache under a random id and puts only the signed id in the
cookie. Both read and write through the request's ``CookieJar`` so the
session cookie is sent with any response, error pages included.

``itsdangerous`` is imported when a store is built; a missing package
raises ``ConfigurationError``.
"""

from __future__ import annotations

import secrets
from typing import Any, Protocol

from treb.cache import Cache
from treb.config import SessionConfig
from treb.errors import ConfigurationError
from treb.http.cookies import CookieJar
from treb.session.session import Session


class SessionStore(Protocol):
    async def load(self, cookies: CookieJar) -> Session: ...
    async def save(self, session: Session, cookies: CookieJar) -> None: ...


def _serializer(config: SessionConfig, salt: str) -> Any:
    try:
        from itsdangerous import URLSafeTimedSerializer
    except ImportError:
        msg = (
            "Sessions require the 'itsdangerous' package. "
            "Install it with: pip install itsdangerous"
        )
        raise ConfigurationError(msg) from None

    if not config.secret_key:
        msg = "SessionConfig.secret_key must not be empty."
        raise ConfigurationError(msg)
    return URLSafeTimedSerializer(config.secret_key, salt=salt)


class _CookieStore:
    """Shared cookie plumbing; the session cookie is never prefixed."""

    __slots__ = ("_config", "_csrf_ttl", "_serializer")

    def __init__(self, config: SessionConfig, *, csrf_ttl: int, salt: str) -> None:
        self._config = config
        self._csrf_ttl = csrf_ttl
        self._serializer = _serializer(config, salt)

    def _read(self, cookies: CookieJar) -> Any:
        from itsdangerous import BadData

        raw = cookies.get(self._config.cookie_name, prefix="")
        if not raw:
            return None
        try:
            return self._serializer.loads(raw, max_age=self._config.max_age)
        except BadData:
            return None

    def _write(self, cookies: CookieJar, payload: Any) -> None:
        cfg = self._config
        cookies.set(
            cfg.cookie_name,
            self._serializer.dumps(payload),
            cfg.max_age,
            path=cfg.path,
            secure=cfg.secure,
            prefix="",
        )

    def _forget(self, cookies: CookieJar) -> None:
        cookies.delete(self._config.cookie_name, prefix="", path=self._config.path)


class SignedCookieSessionStore(_CookieStore):
    """Whole session in a signed cookie."""

    __slots__ = ()

    def __init__(self, config: SessionConfig, *, csrf_ttl: int = 14400) -> None:
        super().__init__(config, csrf_ttl=csrf_ttl, salt="treb.session")

    async def load(self, cookies: CookieJar) -> Session:
        data = self._read(cookies)
        if not isinstance(data, dict):
            data = {}
        return Session(data, csrf_ttl=self._csrf_ttl)

    async def save(self, session: Session, cookies: CookieJar) -> None:
        if session:
            # Rewritten every time so the signature timestamp slides
            self._write(cookies, session.to_dict())
        elif session.modified or cookies.get(self._config.cookie_name, prefix=""):
            self._forget(cookies)


class CacheSessionStore(_CookieStore):
    """Session data in the cache, keyed by a random id."""

    __slots__ = ("_cache",)

    def __init__(self, config: SessionConfig, cache: Cache, *, csrf_ttl: int = 14400) -> None:
        super().__init__(config, csrf_ttl=csrf_ttl, salt="treb.session.id")
        self._cache = cache

    @staticmethod
    def _key(sid: str) -> str:
        return f"session:{sid}"

    async def load(self, cookies: CookieJar) -> Session:
        sid = self._read(cookies)
        if not isinstance(sid, str):
            return Session(csrf_ttl=self._csrf_ttl)
        data = await self._cache.get(self._key(sid))
        if not isinstance(data, dict):
            # Expired or evicted: start over under a fresh id
            return Session(csrf_ttl=self._csrf_ttl)
        return Session(data, sid=sid, csrf_ttl=self._csrf_ttl)

    async def save(self, session: Session, cookies: CookieJar) -> None:
        if session.previous_sid is not None:
            await self._cache.delete(self._key(session.previous_sid))
            session.previous_sid = None
        if not session:
            if session.sid is not None:
                await self._cache.delete(self._key(session.sid))
            if session.modified or cookies.get(self._config.cookie_name, prefix=""):
                self._forget(cookies)
            return
        if session.sid is None:
            session.sid = secrets.token_urlsafe(32)
        await self._cache.set(self._key(session.sid), session.to_dict(), self._config.max_age)
        self._write(cookies, session.sid)
