"""Tests for logging helpers and log redaction."""

from __future__ import annotations

import logging

import pytest

from pyoauth import log
from pyoauth.config import LogSettings
from pyoauth.log import enable_debug, get_logger, redact_sensitive_data, set_level


@pytest.fixture(autouse=True)
def fresh_logger():
    """Reset the cached pyoauth logger around each test."""
    logger = logging.getLogger("pyoauth")
    level = logger.level
    log._LoggerHolder.instance = None  # pylint: disable=protected-access
    yield
    log._LoggerHolder.instance = None  # pylint: disable=protected-access
    logger.setLevel(level)


class TestGetLogger:
    """Tests for logger configuration."""

    def test_configured_from_settings(self) -> None:
        logger = get_logger(LogSettings(level="ERROR"))
        assert logger.name == "pyoauth"
        assert logger.level == logging.ERROR
        assert logger.handlers

    def test_cached(self) -> None:
        assert get_logger(LogSettings()) is get_logger()

    def test_handler_added_once(self) -> None:
        get_logger(LogSettings())
        count = len(logging.getLogger("pyoauth").handlers)
        log._LoggerHolder.instance = None  # pylint: disable=protected-access
        get_logger(LogSettings())
        assert len(logging.getLogger("pyoauth").handlers) == count

    def test_set_level(self) -> None:
        set_level("info")
        assert get_logger().level == logging.INFO
        enable_debug()
        assert get_logger().level == logging.DEBUG


class TestRedaction:
    """Tests for redact_sensitive_data."""

    def test_token_response(self) -> None:
        redacted = redact_sensitive_data(
            {
                "access_token": "at",
                "refresh_token": "rt",
                "id_token": "idt",
                "token_type": "Bearer",
                "expires_in": 3600,
            }
        )
        assert redacted == {
            "access_token": "[REDACTED]",
            "refresh_token": "[REDACTED]",
            "id_token": "[REDACTED]",
            "token_type": "Bearer",
            "expires_in": 3600,
        }

    def test_device_code_response(self) -> None:
        redacted = redact_sensitive_data(
            {"device_code": "dc", "user_code": "uc", "verification_uri": "https://x", "interval": 5}
        )
        assert redacted == {
            "device_code": "[REDACTED]",
            "user_code": "[REDACTED]",
            "verification_uri": "https://x",
            "interval": 5,
        }

    def test_nested(self) -> None:
        redacted = redact_sensitive_data({"outer": [{"client_secret": "s", "name": "n"}]})
        assert redacted == {"outer": [{"client_secret": "[REDACTED]", "name": "n"}]}

    def test_max_depth(self) -> None:
        assert redact_sensitive_data({"a": {"b": 1}}, max_depth=1) == {"a": "[MAX_DEPTH]"}

    @pytest.mark.parametrize("value", [None, "plain", 3])
    def test_scalars_pass_through(self, value: object) -> None:
        assert redact_sensitive_data(value) == value  # type: ignore[arg-type]
