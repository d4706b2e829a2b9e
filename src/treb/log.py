"""Category logging on top of stdlib ``logging``.

Every log category ("exception", "hijack", "database", ...) is a child
of the ``treb`` logger, so ordinary logging configuration applies. Two
levels are added to the stdlib scale: ``ALWAYS`` sits above CRITICAL and
is never filtered by a threshold, ``EXTREME`` sits below DEBUG for
very chatty tracing.

``configure_logging()`` optionally routes each category to its own file,
``<directory>/<category>.log``, one ``[timestamp] message`` line per
record.
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from treb.config import LogConfig

ROOT = "treb"

ALWAYS = logging.CRITICAL + 10
FATAL = logging.CRITICAL
ERROR = logging.ERROR
WARNING = logging.WARNING
INFO = logging.INFO
DEBUG = logging.DEBUG
EXTREME = 5

logging.addLevelName(ALWAYS, "ALWAYS")
logging.addLevelName(EXTREME, "EXTREME")

_LEVELS = {
    "ALWAYS": ALWAYS,
    "FATAL": FATAL,
    "CRITICAL": FATAL,
    "ERROR": ERROR,
    "WARNING": WARNING,
    "INFO": INFO,
    "DEBUG": DEBUG,
    "EXTREME": EXTREME,
}


def get_logger(category: str) -> logging.Logger:
    """Return the logger for a category (``treb.<category>``)."""
    return logging.getLogger(f"{ROOT}.{category}")


def level_for(name: str | int) -> int:
    """Resolve a level name (``"warning"``, ``"FATAL"``) or number."""
    if isinstance(name, int):
        return name
    try:
        return _LEVELS[name.upper()]
    except KeyError:
        msg = f"Unknown log level: {name!r}"
        raise ValueError(msg) from None


def format_message(message: str | Sequence[object]) -> str:
    """Join sequence messages with ``|``; strings pass through."""
    if isinstance(message, str):
        return message
    return "|".join(str(part) for part in message)


def write(category: str, message: str | Sequence[object], level: int = INFO) -> None:
    """Log *message* on *category* at *level*."""
    get_logger(category).log(level, "%s", format_message(message))


class CategoryFileHandler(logging.Handler):
    """Append each record to ``<directory>/<category>.log``.

    The category is the logger name below ``treb``; records logged
    directly on ``treb`` go to ``treb.log``. Files are opened lazily and
    kept open until ``close()``.
    """

    def __init__(self, directory: str | Path, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.directory = Path(directory)
        self._streams: dict[str, IO[str]] = {}
        self.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%d %H:%M:%S"))

    def category(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith(ROOT + "."):
            return name[len(ROOT) + 1 :].replace(".", "_")
        return ROOT

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            category = self.category(record)
            stream = self._streams.get(category)
            if stream is None:
                stream = (self.directory / f"{category}.log").open("a", encoding="utf-8")
                self._streams[category] = stream
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            for stream in self._streams.values():
                stream.close()
            self._streams.clear()
        finally:
            self.release()
        super().close()


def configure_logging(config: LogConfig) -> CategoryFileHandler | None:
    """Install a ``CategoryFileHandler`` on the ``treb`` logger.

    Returns the installed handler, or ``None`` when file logging is
    disabled or no directory is configured. Calling it again replaces a
    previously installed handler.
    """
    root = logging.getLogger(ROOT)
    for existing in [h for h in root.handlers if isinstance(h, CategoryFileHandler)]:
        root.removeHandler(existing)
        existing.close()

    if config.disable or not config.directory:
        return None

    threshold = level_for(config.level)
    handler = CategoryFileHandler(config.directory, level=threshold)
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > threshold:
        root.setLevel(threshold)
    return handler
