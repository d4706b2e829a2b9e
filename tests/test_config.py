"""Tests for treb.config, treb.errors and treb.log."""

import logging

import pytest

from treb.config import AppConfig, EnvConfig, LogConfig
from treb.errors import (
    DEFAULT_REALM,
    ConfigurationError,
    Forbidden,
    HTTPError,
    NotFound,
    Redirect,
    RouteNotFound,
    SessionIntegrityViolation,
    Unauthorized,
    http_error,
)
from treb.log import (
    ALWAYS,
    EXTREME,
    FATAL,
    CategoryFileHandler,
    configure_logging,
    format_message,
    get_logger,
    level_for,
    write,
)


class TestAppConfig:
    def test_defaults(self) -> None:
        config = AppConfig()
        assert config.env.charset == "utf-8"
        assert not config.env.development
        assert config.session.cookie_name == "SESSID"
        assert config.security.hijack.cookie == "MyVoiceIsMyPassport"
        assert config.security.csrf_ttl == 14400
        assert config.databases.default == "default"

    def test_frozen(self) -> None:
        config = AppConfig()
        with pytest.raises(AttributeError):
            config.env = EnvConfig(development=True)  # type: ignore[misc]

    def test_from_mapping(self) -> None:
        config = AppConfig.from_mapping(
            {
                "env": {"development": True, "domain": "example.org"},
                "security": {"hijack": {"salt": "pepper"}},
                "databases": {"pools": {"read": "sqlite:///a.db", "write": ["sqlite:///b.db"]}},
                "max_content_length": 1024,
            }
        )
        assert config.env.development
        assert config.env.domain == "example.org"
        assert config.security.hijack.salt == "pepper"
        assert config.databases.pools == {"read": ("sqlite:///a.db",), "write": ("sqlite:///b.db",)}
        assert config.max_content_length == 1024

    def test_unknown_key(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown config key.*'env'.*debug"):
            AppConfig.from_mapping({"env": {"debug": True}})

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            AppConfig.from_mapping({"session": "cookie"})


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    def test_not_found(self) -> None:
        exc = NotFound()
        assert exc.status == 404
        assert isinstance(exc, HTTPError)

    def test_route_not_found_alias(self) -> None:
        assert RouteNotFound is NotFound

    def test_redirect_strips_line_breaks(self) -> None:
        exc = Redirect("/next\r\nSet-Cookie: x=1")
        assert exc.status == 302
        assert exc.headers == (("Location", "/next  Set-Cookie: x=1"),)

    def test_permanent_redirect(self) -> None:
        assert Redirect("/a", permanent=True).status == 301

    def test_unauthorized_realm(self) -> None:
        assert Unauthorized().headers == (("WWW-Authenticate", f'Basic realm="{DEFAULT_REALM}"'),)
        assert Unauthorized('Adm"in').headers == (("WWW-Authenticate", 'Basic realm="Admin"'),)

    def test_forbidden_detail(self) -> None:
        assert Forbidden().detail == "Request Denied"
        assert Forbidden("Go away").detail == "Go away"

    def test_session_violation(self) -> None:
        assert SessionIntegrityViolation(ajax=True).status == 403
        browser = SessionIntegrityViolation(ajax=False)
        assert browser.status == 302
        assert browser.headers == (("Location", "/"),)

    @pytest.mark.parametrize(
        ("code", "extra", "expected_type", "status"),
        [
            (301, "/x", Redirect, 301),
            (302, "", Redirect, 302),
            (401, "Zone", Unauthorized, 401),
            (403, "", Forbidden, 403),
            (404, "", NotFound, 404),
            (503, "", HTTPError, 503),
            (42, "", HTTPError, 500),
        ],
    )
    def test_http_error(self, code, extra, expected_type, status) -> None:
        exc = http_error(code, extra)
        assert isinstance(exc, expected_type)
        assert exc.status == status

    def test_str(self) -> None:
        assert str(HTTPError(status=418, detail="teapot")) == "418: teapot"
        assert str(HTTPError(status=418)) == "418"


# =============================================================================
# Logging
# =============================================================================


class TestLog:
    def test_category_logger(self) -> None:
        assert get_logger("cache").name == "treb.cache"

    def test_levels(self) -> None:
        assert level_for("fatal") == FATAL
        assert level_for("extreme") == EXTREME
        assert level_for(25) == 25
        assert ALWAYS > FATAL
        with pytest.raises(ValueError, match="Unknown log level"):
            level_for("loud")

    def test_format_message(self) -> None:
        assert format_message(("a", 1, None)) == "a|1|None"
        assert format_message("plain") == "plain"

    def test_write(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="treb"):
            write("hijack", ("x", "y"), FATAL)
        record = caplog.records[-1]
        assert record.name == "treb.hijack"
        assert record.levelno == FATAL
        assert record.getMessage() == "x|y"

    def test_category_files(self, tmp_path) -> None:
        handler = configure_logging(LogConfig(directory=tmp_path, level="INFO"))
        assert isinstance(handler, CategoryFileHandler)
        try:
            write("database", ("pool", "down"), FATAL)
            get_logger("exception").info("boom")
            get_logger("exception").debug("too quiet")
        finally:
            configure_logging(LogConfig())

        assert (tmp_path / "database.log").read_text().strip().endswith("pool|down")
        lines = (tmp_path / "exception.log").read_text().splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("[")
        assert lines[0].endswith("] boom")

    def test_disabled(self, tmp_path) -> None:
        assert configure_logging(LogConfig(directory=tmp_path, disable=True)) is None
        assert configure_logging(LogConfig()) is None
