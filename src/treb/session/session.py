"""The per-request session.

A ``Session`` is a mutable mapping loaded by a ``SessionStore`` before
the controller's ``init`` runs and written back by the server pipeline
after the response is built (error responses included). It also carries
the helpers that live on session data: CSRF tokens and one-shot flash
messages.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable, Iterator, MutableMapping
from typing import Any

TOKENS = "tokens"
MESSAGES = "messages"


class Session(MutableMapping[str, Any]):
    """Session data plus change tracking.

    ``sid`` is the server-side id when the store keeps data in the
    cache; cookie sessions leave it ``None``.
    """

    __slots__ = ("_data", "_modified", "clock", "csrf_ttl", "previous_sid", "sid")

    def __init__(
        self,
        data: MutableMapping[str, Any] | None = None,
        *,
        sid: str | None = None,
        csrf_ttl: int = 14400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self._modified = False
        self.sid = sid
        self.previous_sid: str | None = None
        self.csrf_ttl = csrf_ttl
        self.clock = clock

    def __repr__(self) -> str:
        return f"Session({self._data!r})"

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._modified = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._modified = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def modified(self) -> bool:
        return self._modified

    def touch(self) -> None:
        """Mark the session for saving after an in-place change to a nested value."""
        self._modified = True

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def regenerate(self) -> None:
        """Drop all data and the server-side id; the store issues a new one."""
        self._data.clear()
        self._modified = True
        if self.sid is not None:
            self.previous_sid = self.sid
            self.sid = None

    # -- CSRF tokens --

    def generate_token(self, name: str = "csrf") -> str:
        """Token for form *name*, valid for ``csrf_ttl`` seconds from now.

        An unexpired token is reused, so several forms rendered in one
        page share it; its lifetime is extended on every call.
        """
        now = self.clock()
        tokens = self._data.setdefault(TOKENS, {})
        entry = tokens.get(name)
        if not entry or entry.get("time", 0) + self.csrf_ttl < now:
            entry = {"token": secrets.token_hex(16)}
        entry["time"] = now
        tokens[name] = entry
        self._modified = True
        return entry["token"]

    def check_token(self, name: str, value: str | None) -> bool:
        """Whether *value* is the live token for form *name*."""
        entry = self._data.get(TOKENS, {}).get(name)
        if not entry or not value or not isinstance(value, str):
            return False
        if entry.get("time", 0) + self.csrf_ttl <= self.clock():
            return False
        return secrets.compare_digest(entry["token"], value)

    # -- Flash messages --

    def set_message(self, text: str, kind: str = "info") -> None:
        """Store a message for the next page that asks for *kind*."""
        self._data.setdefault(MESSAGES, {})[kind] = text
        self._modified = True

    def get_message(self, kind: str = "info", *, purge: bool = True) -> str | None:
        """The message stored for *kind*, removed unless ``purge=False``."""
        messages = self._data.get(MESSAGES)
        if not messages or kind not in messages:
            return None
        if not purge:
            return messages[kind]
        text = messages.pop(kind)
        if not messages:
            del self._data[MESSAGES]
        self._modified = True
        return text
