"""Session anti-hijacking.

A new session records when it started and a token derived from the
client's user agent, a configured salt and that start time. The token
is kept both in the session and in a separate cookie. On later requests
all three (stored, cookie, recomputed) must agree; otherwise the
session is considered stolen: it is wiped, the token cookie deleted, and
the request refused.
"""

import hashlib
from collections.abc import Callable
from datetime import UTC, datetime

from treb.config import HijackConfig
from treb.errors import SessionIntegrityViolation
from treb.http.cookies import CookieJar
from treb.http.request import Request
from treb.log import WARNING, get_logger, write
from treb.session.session import Session

UNSET_SALT = "Someone didn't configure their salt!"

logger = get_logger("session")


def hijack_token(agent: str, salt: str, started: str) -> str:
    return hashlib.sha1(f"{agent}|{salt}|{started}".encode(), usedforsecurity=False).hexdigest()


def _salt(config: HijackConfig) -> str:
    if not config.salt:
        logger.warning("Anti-hijack salt left blank in site config!")
        return UNSET_SALT
    return config.salt


def protect(
    session: Session,
    request: Request,
    cookies: CookieJar,
    config: HijackConfig,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> None:
    """Verify (or set up) the anti-hijack token for *session*.

    Raises ``SessionIntegrityViolation`` after resetting a session whose
    tokens disagree.
    """
    if config.disable:
        return

    agent = request.user_agent
    if not session:
        session["started"] = now().isoformat(timespec="seconds")
        token = hijack_token(agent, _salt(config), session["started"])
        session["hijack"] = token
        cookies.set(config.cookie, token)
        return

    token = hijack_token(agent, _salt(config), str(session.get("started", "")))
    stored = session.get("hijack")
    presented = cookies.get(config.cookie)
    if stored and presented and stored == presented == token:
        return

    session.regenerate()
    cookies.delete(config.cookie)
    write("hijack", (stored, presented, token, agent), WARNING)
    raise SessionIntegrityViolation(ajax=request.is_ajax)
