import io
import json
import logging
import re
from unittest.mock import patch

import pytest

from cablegate.util import LogHandler, init_logger, is_tty, open_file_limit, to_json

TIMESTAMP = re.compile(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z")


def make_record(level, msg, fields=None, created=0.0):
    record = logging.LogRecord("cablegate.test", level, __file__, 1, msg, None, None)
    record.created = created
    if fields is not None:
        record.fields = fields
    return record


def test_plain_format_pins_layout():
    handler = LogHandler(io.StringIO(), tty=False)
    line = handler.format_record(make_record(logging.INFO, "hello", {"sid": "42", "context": "rpc"}))
    assert line == "I 1970-01-01T00:00:00.000Z context=rpc sid=42 " + "hello".ljust(25) + "\n"


def test_plain_format_level_chars():
    handler = LogHandler(io.StringIO(), tty=False)
    chars = [
        handler.format_record(make_record(level, "m"))[0]
        for level in (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)
    ]
    assert chars == ["D", "I", "W", "E", "F"]


def test_tty_format_uses_colors():
    handler = LogHandler(io.StringIO(), tty=True)
    line = handler.format_record(make_record(logging.WARNING, "careful", {"sid": "42"}))
    assert line.startswith("\033[33m  WARN\033[0m ")
    assert " \033[33msid\033[0m=42" in line
    assert line.endswith("\033[33m" + "careful".ljust(25) + "\033[0m\n")


def test_long_message_not_truncated():
    handler = LogHandler(io.StringIO(), tty=False)
    message = "x" * 40
    line = handler.format_record(make_record(logging.ERROR, message))
    assert line.endswith(" " + message + "\n")


def test_emit_writes_to_stream():
    stream = io.StringIO()
    handler = LogHandler(stream, tty=False)
    logger = logging.getLogger("cablegate.test.emit")
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        logger.info("connected %s", "ok", extra={"fields": {"enabled": True}})
    finally:
        logger.removeHandler(handler)
    level, timestamp, rest = stream.getvalue().split(" ", 2)
    assert level == "I"
    assert TIMESTAMP.fullmatch(timestamp).group(0) == timestamp
    assert rest == "enabled=true " + "connected ok".ljust(25) + "\n"


@pytest.fixture
def restore_logger():
    logger = logging.getLogger("cablegate")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)


def test_init_logger_text(restore_logger):
    stream = io.StringIO()
    with patch("sys.stdout", stream):
        init_logger("text", "debug")
        restore_logger.debug("ready", extra={"fields": {"sid": "7"}})
    level, timestamp, rest = stream.getvalue().split(" ", 2)
    assert level == "D"
    assert TIMESTAMP.fullmatch(timestamp).group(0) == timestamp
    assert rest == "sid=7 " + "ready".ljust(25) + "\n"
    assert restore_logger.level == logging.DEBUG


def test_init_logger_json_output(restore_logger):
    stream = io.StringIO()
    with patch("sys.stdout", stream):
        init_logger("json", "warn")
        restore_logger.warning("hi", extra={"fields": {"sid": "1"}})
    entry = json.loads(stream.getvalue())
    assert entry["message"] == "hi"
    assert entry["level"] == "warn"
    assert entry["fields"] == {"sid": "1"}
    assert restore_logger.level == logging.WARNING


def test_init_logger_unknown_level(restore_logger):
    with pytest.raises(ValueError, match="Unknown log level: verbose"):
        init_logger("text", "verbose")


def test_init_logger_unknown_format(restore_logger):
    with pytest.raises(ValueError, match="Unknown log format: xml"):
        init_logger("xml", "info")


def test_is_tty_false_for_buffer():
    with patch("sys.stdout", io.StringIO()):
        assert is_tty() is False


def test_to_json_round_trip():
    value = {"stream": "chat", "data": [1, 2, {"a": None}]}
    assert json.loads(to_json(value)) == value


def test_to_json_escapes_html():
    encoded = to_json("<b>&</b>")
    assert b"<" not in encoded and b"&" not in encoded
    assert json.loads(encoded) == "<b>&</b>"


def test_to_json_rejects_unencodable():
    with pytest.raises(TypeError):
        to_json({"bad": object()})


def test_open_file_limit_shape():
    limit = open_file_limit()
    match = re.fullmatch(r"-?\d+|unknown|unsupported", limit)
    assert match.group(0) == limit