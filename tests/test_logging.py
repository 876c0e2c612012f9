"""Tests for structured JSON logging."""

import json
import logging
import sys

from eventpulse.core.logging import JSONFormatter, configure_logging, get_logger


def make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="eventpulse.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_known_and_extra_fields():
    record = make_record(event_id="e-1", event_type="user.created", attempts=2, deleted=4)

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["logger"] == "eventpulse.service"
    assert data["event_id"] == "e-1"
    assert data["event_type"] == "user.created"
    assert data["attempts"] == 2
    assert data["deleted"] == 4
    assert "timestamp" in data
    assert "pathname" not in data


def test_formatter_serializes_unknown_types_as_strings():
    record = make_record(when=object())

    data = json.loads(JSONFormatter().format(record))

    assert data["when"].startswith("<object")


def test_formatter_includes_exception_text():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = make_record(exc_info=sys.exc_info())

    data = json.loads(JSONFormatter().format(record))

    assert "RuntimeError: boom" in data["exc_info"]


def test_get_logger_namespaces_under_eventpulse():
    assert get_logger("worker").name == "eventpulse.worker"
    assert get_logger("eventpulse.service").name == "eventpulse.service"


def test_configure_logging_is_idempotent():
    logger = configure_logging("debug")
    handlers = list(logger.handlers)

    configure_logging(logging.WARNING)

    assert logger.handlers == handlers
    assert logger.level == logging.WARNING
    assert isinstance(logger.handlers[0].formatter, JSONFormatter)
    assert not logger.propagate
