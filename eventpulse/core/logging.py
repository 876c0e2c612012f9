"""Structured JSON logging for eventpulse."""

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Derived at import time so attributes added by newer Pythons (taskName) are skipped too
_STANDARD_LOGRECORD_KEYS: frozenset[str] = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__.keys()
)

_KNOWN_FIELDS = ("event_id", "event_type", "organization_id", "handler", "attempts")


class JSONFormatter(logging.Formatter):
    """JSON formatter with UTC ISO8601 timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for field in _KNOWN_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        for key, value in vars(record).items():
            if key not in _STANDARD_LOGRECORD_KEYS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exc_info"] = self.formatException(record.exc_info)

        try:
            return json.dumps(log_data, default=str)
        except Exception:
            return str(log_data)


def _setup_json_handler(logger: logging.Logger, level: int) -> None:
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the root ``eventpulse`` logger with JSON formatting.

    Child loggers (``eventpulse.service``, ``eventpulse.worker``...) propagate
    to it, so this is the only handler a process needs.

    Args:
        level: Logging level as an int or a name such as ``"DEBUG"``.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger = logging.getLogger("eventpulse")
    _setup_json_handler(logger, level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``eventpulse`` logger.

    Args:
        name: Dotted suffix, e.g. ``"service"`` gives ``eventpulse.service``.
    """
    if name == "eventpulse" or name.startswith("eventpulse."):
        return logging.getLogger(name)
    return logging.getLogger(f"eventpulse.{name}")
