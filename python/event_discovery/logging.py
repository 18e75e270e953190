"""Structured logging for the event discovery engine.

This module provides structured logging functions on top of the
standard library ``logging`` package. Every function takes a message
and an optional set of structured fields, which are normalized to
strings and attached to the record as ``record.fields``.

Example:
    >>> from event_discovery import log_info, log_error
    >>>
    >>> log_info("Handler subscribed", {
    ...     "instance_key": "orders.OrderService@0x7f",
    ...     "event_type": "order.created"
    ... })
    >>>
    >>> try:
    ...     register()
    ... except Exception as e:
    ...     log_error(f"Registration failed: {e}", {
    ...         "error_type": type(e).__name__
    ...     })
"""

from __future__ import annotations

import logging
import os
from typing import Any

from .types import LogContext

LOGGER_NAME = "event_discovery"

# Finer than DEBUG, used for per-method scan output
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_logger = logging.getLogger(LOGGER_NAME)

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StructuredFormatter(logging.Formatter):
    """Formatter that appends structured fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            rendered = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
            line = f"{line} {rendered}"
        return line


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a structured stream handler to the package logger.

    Safe to call repeatedly; the handler is installed once.

    Args:
        level: One of trace, debug, info, warn, error. Defaults to
            the EVENT_DISCOVERY_LOG_LEVEL environment variable, then info.

    Returns:
        The configured package logger.
    """
    level_name = (level or os.environ.get("EVENT_DISCOVERY_LOG_LEVEL", "info")).lower()
    _logger.setLevel(_LEVELS.get(level_name, logging.INFO))

    if not any(isinstance(h.formatter, StructuredFormatter) for h in _logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            StructuredFormatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
        _logger.addHandler(handler)

    return _logger


def log_error(message: str, fields: dict[str, Any] | LogContext | None = None) -> None:
    """Log an ERROR level message with structured fields.

    Use this for terminal failures such as exhausted retries.

    Args:
        message: The log message.
        fields: Optional structured fields for context. Can be a dict
                or a LogContext instance.
    """
    _log(logging.ERROR, message, fields)


def log_warn(message: str, fields: dict[str, Any] | LogContext | None = None) -> None:
    """Log a WARN level message with structured fields.

    Use this for degraded operation or retryable failures.

    Args:
        message: The log message.
        fields: Optional structured fields for context.
    """
    _log(logging.WARNING, message, fields)


def log_info(message: str, fields: dict[str, Any] | LogContext | None = None) -> None:
    """Log an INFO level message with structured fields.

    Use this for lifecycle events and state transitions.

    Args:
        message: The log message.
        fields: Optional structured fields for context.
    """
    _log(logging.INFO, message, fields)


def log_debug(message: str, fields: dict[str, Any] | LogContext | None = None) -> None:
    """Log a DEBUG level message with structured fields.

    Args:
        message: The log message.
        fields: Optional structured fields for context.
    """
    _log(logging.DEBUG, message, fields)


def log_trace(message: str, fields: dict[str, Any] | LogContext | None = None) -> None:
    """Log a TRACE level message with structured fields.

    Use this for very verbose logging, like per-method scan results.
    This level is typically disabled in production.

    Args:
        message: The log message.
        fields: Optional structured fields for context.
    """
    _log(TRACE, message, fields)


def _log(level: int, message: str, fields: dict[str, Any] | LogContext | None) -> None:
    if not _logger.isEnabledFor(level):
        return
    _logger.log(level, message, extra={"fields": _normalize_fields(fields)})


def _normalize_fields(
    fields: dict[str, Any] | LogContext | None,
) -> dict[str, str] | None:
    """Normalize fields to a dict of strings.

    Args:
        fields: Input fields as dict, LogContext, or None.

    Returns:
        Dict with string values, or None if no fields.
    """
    if fields is None:
        return None

    if isinstance(fields, LogContext):
        # Convert LogContext to dict, excluding None values
        return {k: str(v) for k, v in fields.model_dump().items() if v is not None}

    return {k: str(v) for k, v in fields.items()}


__all__ = [
    "LOGGER_NAME",
    "TRACE",
    "StructuredFormatter",
    "configure_logging",
    "log_error",
    "log_warn",
    "log_info",
    "log_debug",
    "log_trace",
]
