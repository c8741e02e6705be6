"""Structured logging for roboclaw-mcp.

Log calls take keyword data next to the message:

    logger = get_logger(__name__)
    logger.info("Port opened", port="/dev/ttyACM0", baud=115200)

The keywords, plus whatever an enclosing ``LogContext`` holds, travel on the
record as ``structured_data``. The text formatter appends them as
``key=value`` pairs; the JSON formatter lifts them to top-level keys.

Everything goes to stderr by default because stdout carries the MCP stdio
stream.

Security Note:
    Bytes read from the controller go in as keywords (rendered as hex),
    never interpolated into the message, so a garbled reply cannot forge
    a log line:

    logger.warning("CRC mismatch", command=cmd, response=reply)   # fine
    logger.warning(f"CRC mismatch on {reply!r}")                  # avoid

Example:
    with LogContext(experiment="step", motor=1):
        logger.info("Experiment started")
        logger.debug("Sample", t_ms=100, vel=42.0)

    configure_logging(level="DEBUG", json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Mapping, MutableMapping
from datetime import UTC, datetime
from typing import Any, TextIO, cast

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

ROOT_LOGGER_NAME = "roboclaw_mcp"

#: Text layout; the thread name shows which tool call a line belongs to.
TEXT_FORMAT = "%(asctime)s [%(threadName)s] - %(name)s - %(levelname)s - %(message)s"

_context_fields: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "roboclaw_log_fields", default={}
)


def _fields(record: logging.LogRecord) -> Mapping[str, Any]:
    return getattr(record, "structured_data", None) or {}


# =============================================================================
# Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """``logging.Logger`` whose level methods accept arbitrary keywords.

    ``info``/``debug``/... pass unknown keywords through to ``_log``, which
    collects them here. Context fields come first so a keyword at the call
    site replaces a context field of the same name.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        merged = dict(_context_fields.get())
        merged.update(fields)
        record_extra = dict(extra or {})
        record_extra["structured_data"] = merged
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=record_extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Text lines: ``TEXT_FORMAT`` then `` | key=value ...``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Layout string, ``TEXT_FORMAT`` when None.
            datefmt: Layout for ``%(asctime)s``.
            include_structured: Append the key=value suffix.
        """
        super().__init__(fmt or TEXT_FORMAT, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _fields(record)
        if not (self.include_structured and fields):
            return line
        suffix = " ".join(f"{key}={_format_value(value)}" for key, value in fields.items())
        return f"{line} | {suffix}"


class JSONFormatter(logging.Formatter):
    """Single-line JSON objects for log shippers.

    Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``, ``message``,
    every structured field, and ``exception`` when one is attached.
    Values JSON cannot encode are written with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_fields(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _format_value(value: Any) -> str:
    """Render one structured value for the text formatter.

    Example:
        >>> _format_value(b"\\x80\\x12")
        '8012'
        >>> _format_value("two words")
        '"two words"'
        >>> _format_value(None)
        'null'
    """
    if value is None:
        return "null"
    if isinstance(value, bytes | bytearray):
        return bytes(value).hex()
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    if isinstance(value, str) and " " in value:
        return f'"{value}"'
    return str(value)


# =============================================================================
# Context
# =============================================================================


class LogContext:
    """Attach fields to every record logged inside a ``with`` block.

    Backed by a ContextVar, so each worker thread and asyncio task sees
    only its own fields. Nested blocks stack; the inner value of a
    repeated key wins until the inner block exits.

    Usage:
        with LogContext(tool="run_step_response", motor=2):
            logger.info("Step applied", pwm=16000)
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: contextvars.Token[Mapping[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _context_fields.set({**_context_fields.get(), **self._fields})
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _context_fields.reset(self._token)
            self._token = None


# =============================================================================
# Setup
# =============================================================================

_installed = False
_setup_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install the handler on the ``roboclaw_mcp`` logger.

    Later calls are no-ops unless ``force`` is set, in which case the old
    handler is removed first. Records do not propagate to the root logger.

    Args:
        level: Minimum level as a number or a name such as "DEBUG".
        json_format: Use ``JSONFormatter`` rather than the text layout.
        stream: Destination, stderr when None.
        include_structured: Text layout only; append key=value fields.
        force: Replace an existing configuration.

    Example:
        >>> configure_logging(level="DEBUG", stream=io.StringIO(), force=True)
    """
    with _setup_lock:
        if force:
            _remove_handlers()
        _install(level, json_format, stream, include_structured)


def _install(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
    include_structured: bool = True,
) -> None:
    """Caller holds ``_setup_lock``."""
    global _installed
    if _installed:
        return

    logging.setLoggerClass(StructuredLogger)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level.upper() if isinstance(level, str) else level)
    package_logger.addHandler(handler)
    package_logger.propagate = False
    _installed = True


def _remove_handlers() -> None:
    """Caller holds ``_setup_lock``."""
    global _installed
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    _installed = False


def reset_logging() -> None:
    """Drop the installed handler so the next setup starts clean."""
    with _setup_lock:
        _remove_handlers()


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for ``name``, installing the default setup once.

    The logger class must be set before the first ``getLogger`` of a name,
    otherwise that name stays a plain ``logging.Logger``.

    Example:
        >>> logger = get_logger("roboclaw_mcp.drivers.transport")
        >>> logger.debug("TX", data=b"\\x80\\x12")
    """
    if not _installed:
        with _setup_lock:
            if not _installed:  # pragma: no branch
                _install()
    return cast(StructuredLogger, logging.getLogger(name))
