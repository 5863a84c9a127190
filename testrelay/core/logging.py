"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""Logging infrastructure with structured context and credential redaction.

Every TestRelay module logs through a ``StructuredLogger`` obtained from
:func:`get_logger`. Loggers accept a ``context=`` keyword whose mapping is
attached to the record and rendered by the console and JSON formatters.
Correlation ids live in a ``ContextVar`` so that concurrent asyncio tasks of
one migration pass share the id of the pass that spawned them.
"""

import json
import logging
import os
import re
import sys
import time
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from re import Pattern
from typing import Any

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "testrelay"

_correlation_id: ContextVar[str | None] = ContextVar("testrelay_correlation_id", default=None)

_SENSITIVE_KEYS = frozenset(
    {"authorization", "token", "password", "api_key", "base64credentials", "payload", "secret"},
)


def get_correlation_id() -> str:
    """
    Get the current correlation ID, generating one on first use.
    """
    current = _correlation_id.get()
    if not current:
        current = f"relay-{uuid.uuid4()}"
        _correlation_id.set(current)
    return current


def set_correlation_id(value: str | None) -> None:
    _correlation_id.set(value)


class LogRedactor:
    """
    Redacts credentials from log messages and context values.
    """

    def __init__(self) -> None:
        self.patterns: dict[str, Pattern] = {
            "token": re.compile(
                r'(api[_-]?key|token|base64Credentials)["\']?\s*[:=]\s*["\']?([^"\'&\s,}]{4,})',
                re.IGNORECASE,
            ),
            "password": re.compile(
                r'(password|passwd|secret)["\']?\s*[:=]\s*["\']?([^"\'&\s,}]+)', re.IGNORECASE
            ),
            "authorization": re.compile(r"\b(Basic|Bearer)\s+([A-Za-z0-9._~+/=-]{4,})"),
        }

    def redact(self, message: Any) -> Any:
        """
        Redact sensitive information from a message.
        """
        if not isinstance(message, str):
            return message

        message = self.patterns["token"].sub(r"\1: [REDACTED]", message)
        message = self.patterns["password"].sub(r"\1: [REDACTED]", message)
        return self.patterns["authorization"].sub(r"\1 [REDACTED]", message)

    def redact_context(self, context: Mapping[str, Any]) -> dict[str, Any]:
        """
        Redact values of sensitive keys and scrub string values of a context mapping.
        """
        cleaned: dict[str, Any] = {}
        for key, value in context.items():
            if key.lower() in _SENSITIVE_KEYS:
                cleaned[key] = "[REDACTED]"
            elif isinstance(value, Mapping):
                cleaned[key] = self.redact_context(value)
            else:
                cleaned[key] = self.redact(value)
        return cleaned


redactor = LogRedactor()


class StructuredLogger(logging.Logger):
    """
    Logger that supports structured logging with context data.
    """

    def _log(
        self,
        level: int,
        msg: Any,
        args: tuple,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """
        Log a message with the specified level and optional context.

        Args:
        ----
            level: The log level (DEBUG, INFO, etc.)
            msg: The message to log
            args: Arguments for string formatting
            exc_info: Exception info for traceback
            extra: Extra attributes to add to the LogRecord
            stack_info: Whether to include stack info
            stacklevel: Stack frame offset used to find the caller
            **kwargs: May include 'context', a mapping attached to the record

        """
        context = kwargs.pop("context", None)
        extra = dict(extra or {})

        # "context" would collide with nothing on LogRecord today, but keep a distinct name
        if context:
            extra["context_data"] = redactor.redact_context(context)
        extra["correlation_id"] = get_correlation_id()

        super()._log(
            level,
            redactor.redact(msg),
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs log records as JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if getattr(record, "context_data", None):
            log_data["context"] = record.context_data

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str)


class RichContextFormatter(logging.Formatter):
    """
    Formatter for Rich console output that appends context data.
    """

    def __init__(self, fmt: str = "%(message)s", include_correlation_id: bool = False) -> None:
        super().__init__(fmt)
        self.include_correlation_id = include_correlation_id

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        context_data = getattr(record, "context_data", None)
        if context_data:
            context_str = " ".join(f"[{k}={v}]" for k, v in context_data.items())
            message = f"{message} {context_str}"

        if self.include_correlation_id and hasattr(record, "correlation_id"):
            message = f"{message} [correlation_id={record.correlation_id}]"

        return message


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation_name: str,
    level: int = logging.INFO,
    context: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Log the start, completion or failure of an operation with its duration.

    Args:
    ----
        logger: The structured logger to use
        operation_name: Human readable name of the operation
        level: Log level for the start and completion messages
        context: Context data included in every message; the caller may add
            keys to the yielded mapping before the block finishes

    Raises:
    ------
        Exception: Re-raises any exception raised inside the block

    """
    start_time = time.monotonic()
    context = dict(context or {})
    context["operation_id"] = uuid.uuid4().hex[:8]

    logger.log(level, f"Starting {operation_name}", context=context)
    try:
        yield context
    except Exception as e:
        duration = time.monotonic() - start_time
        logger.error(
            f"Failed {operation_name} after {duration:.2f}s",
            context={**context, "error_type": type(e).__name__, "error": str(e)},
        )
        raise
    duration = time.monotonic() - start_time
    logger.log(level, f"Completed {operation_name} in {duration:.2f}s", context=context)


@contextmanager
def correlation_id(value: str | None = None) -> Iterator[str]:
    """
    Bind a correlation ID for the current context, restoring the previous one on exit.
    """
    token = _correlation_id.set(value or f"relay-{uuid.uuid4()}")
    try:
        yield get_correlation_id()
    finally:
        _correlation_id.reset(token)


def _plain_formatter(include_timestamp: bool) -> logging.Formatter:
    format_str = (
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        if include_timestamp
        else "[%(levelname)s] %(name)s: %(message)s"
    )
    return logging.Formatter(format_str)


def configure_logging(
    level: int | str = logging.INFO,
    log_file: str | None = None,
    json_format: bool = False,
    include_timestamp: bool = True,
    use_rich: bool = True,
    include_correlation_id: bool = False,
    debug: bool = False,
) -> None:
    """
    Configure the ``testrelay`` logger hierarchy.

    Args:
    ----
        level: Log level name or number
        log_file: Optional path to a log file
        json_format: Emit JSON records instead of text
        include_timestamp: Include timestamps in text output
        use_rich: Use a Rich console handler
        include_correlation_id: Append the correlation ID to console lines
        debug: Force DEBUG level

    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if debug:
        level = logging.DEBUG

    handlers: list[logging.Handler] = []

    if use_rich and not json_format:
        rich_handler = RichHandler(rich_tracebacks=True, markup=False, show_time=include_timestamp)
        rich_handler.setFormatter(
            RichContextFormatter("%(message)s", include_correlation_id=include_correlation_id)
        )
        handlers.append(rich_handler)
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            JSONFormatter() if json_format else _plain_formatter(include_timestamp)
        )
        handlers.append(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            JSONFormatter() if json_format else _plain_formatter(include_timestamp)
        )
        handlers.append(file_handler)

    logger = get_logger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)

    logger.debug(f"Logging configured with level {logging.getLevelName(level)}")


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger, creating it with the StructuredLogger class if needed.

    Args:
    ----
        name: Dotted logger name, normally ``testrelay.<module>``

    Returns:
    -------
        A structured logger instance

    """
    existing = logging.Logger.manager.loggerDict.get(name)
    if isinstance(existing, StructuredLogger):
        return existing

    previous = logging.getLoggerClass()
    logging.setLoggerClass(StructuredLogger)
    try:
        return logging.getLogger(name)  # type: ignore[return-value]
    finally:
        logging.setLoggerClass(previous)
