"""Sessions for controllers that declare ``session = True``.

The store is chosen by ``SessionConfig.store``::

    AppConfig(session=SessionConfig(secret_key="...", store="cache"))

Inside a controller the started session is ``self.session_data``::

    class Account(Controller):
        session = True

        @action()
        async def account(self):
            self.data["token"] = self.session_data.generate_token("profile")
"""

from treb.cache import Cache
from treb.config import AppConfig
from treb.errors import ConfigurationError
from treb.session.hijack import hijack_token, protect
from treb.session.session import Session
from treb.session.store import CacheSessionStore, SessionStore, SignedCookieSessionStore


def build_session_store(config: AppConfig, cache: Cache) -> SessionStore:
    """The store named by ``config.session.store`` ("cookie" or "cache")."""
    ttl = config.security.csrf_ttl
    if config.session.store == "cookie":
        return SignedCookieSessionStore(config.session, csrf_ttl=ttl)
    if config.session.store == "cache":
        return CacheSessionStore(config.session, cache, csrf_ttl=ttl)
    msg = f"Unknown session store {config.session.store!r}; expected 'cookie' or 'cache'"
    raise ConfigurationError(msg)


__all__ = [
    "CacheSessionStore",
    "Session",
    "SessionStore",
    "SignedCookieSessionStore",
    "build_session_store",
    "hijack_token",
    "protect",
]
