"""Logging utilities for pyoauth.

Every module logs through a child of the ``pyoauth`` logger
(``pyoauth.engine``, ``pyoauth.store``, ...). The parent logger gets a
stderr handler on first use, configured from ``LogSettings``.
"""

from __future__ import annotations

import logging
import re
import sys

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger(settings: LogSettings | None = None) -> logging.Logger:
    """Get the pyoauth logger instance.

    Parameters
    ----------
    settings : LogSettings, optional
        Level and format to apply on first use. Defaults to the global
        settings.

    Returns
    -------
    logging.Logger
        The pyoauth logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        if settings is None:
            from .config import get_settings

            settings = get_settings().log

        logger = logging.getLogger("pyoauth")
        logger.setLevel(settings.level)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter(settings.format))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable verbose logging of requests, state changes and scheduling."""
    set_level(logging.DEBUG)


# Matches token, secret and code fields in OAuth payloads, but not token_type.
_SENSITIVE_FIELD = re.compile(
    r"(?!token_type$).*(token|secret|password|code|verifier|assertion|credential|authorization)"
)

Redactable = dict[str, Any] | list[Any] | str | None


def redact_sensitive_data(data: Redactable, max_depth: int = 5) -> Redactable:
    """Return a copy of ``data`` that is safe to log.

    Values of token, secret and code fields are replaced by ``"[REDACTED]"``
    in nested dicts and lists. Anything nested deeper than ``max_depth`` is
    replaced by ``"[MAX_DEPTH]"``.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: "[REDACTED]"
            if _SENSITIVE_FIELD.match(str(key).lower())
            else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
