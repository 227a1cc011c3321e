"""Logging setup, JSON encoding and process information helpers."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

_RED = 31
_YELLOW = 33
_BLUE = 34
_GRAY = 37

_LEVELS = (
    (logging.CRITICAL, "FATAL", "F", _RED),
    (logging.ERROR, "ERROR", "E", _RED),
    (logging.WARNING, "WARN", "W", _YELLOW),
    (logging.INFO, "INFO", "I", _BLUE),
)
_DEBUG = (logging.DEBUG, "DEBUG", "D", _GRAY)

_LEVEL_NAMES = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

ROOT_LOGGER = "cablegate"


def _level_info(levelno: int) -> tuple[int, str, str, int]:
    return next((info for info in _LEVELS if levelno >= info[0]), _DEBUG)


def _timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = getattr(record, "fields", None)
    return dict(fields) if isinstance(fields, dict) else {}


class LogHandler(logging.Handler):
    """Writes one line per record; colored when writing to a terminal.

    Structured fields are taken from the record's "fields" attribute
    (pass extra={"fields": {...}} when logging).
    """

    def __init__(self, stream: TextIO | None = None, tty: bool | None = None) -> None:
        super().__init__()
        self.stream = stream if stream is not None else sys.stdout
        self.tty = is_tty() if tty is None else tty

    def format_record(self, record: logging.LogRecord) -> str:
        """Render a record as a single line, newline included."""
        _, name, char, color = _level_info(record.levelno)
        ts = _timestamp(record.created)
        fields = _record_fields(record)
        message = record.getMessage()

        if self.tty:
            parts = [f"\033[{color}m{name:>6}\033[0m {ts}"]
            parts.extend(
                f" \033[{color}m{key}\033[0m={_format_value(fields[key])}" for key in sorted(fields)
            )
            parts.append(f" \033[{color}m{message:<25}\033[0m\n")
        else:
            parts = [f"{char} {ts}"]
            parts.extend(f" {key}={_format_value(fields[key])}" for key in sorted(fields))
            parts.append(f" {message:<25}\n")
        return "".join(parts)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(self.format_record(record))
            self.stream.flush()
        except Exception:
            self.handleError(record)


class _JSONHandler(logging.Handler):
    def __init__(self, stream: TextIO) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            name = _level_info(record.levelno)[1].lower()
            entry = {
                "fields": _record_fields(record),
                "level": name,
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "message": record.getMessage(),
            }
            self.stream.write(json.dumps(entry, default=str) + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def init_logger(format: str, level: str) -> None:  # noqa: A002
    """Set the package log level and output format ("text" or "json")."""
    log_level = _LEVEL_NAMES.get(level)
    if log_level is None:
        raise ValueError(
            f"Unknown log level: {level}.\nAvailable levels are: debug, info, warn, error, fatal"
        )

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    if format == "text":
        handler: logging.Handler = LogHandler(sys.stdout, is_tty())
    elif format == "json":
        handler = _JSONHandler(sys.stdout)
    else:
        raise ValueError(f"Unknown log format: {format}.\nAvaialable formats are: text, json")

    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)


def is_tty() -> bool:
    """True when standard output is a terminal."""
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


def to_json(value: Any) -> bytes:
    """Encode a value as compact JSON with HTML-sensitive characters escaped."""
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def open_file_limit() -> str:
    """The process's open file limit, "unknown" if unreadable, "unsupported" without rlimits."""
    try:
        import resource
    except ImportError:
        return "unsupported"
    try:
        soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
    except (OSError, ValueError):
        return "unknown"
    return str(soft)