"""Logging configuration for stepflow.

Every module logs through ``logging.getLogger(__name__)``; nothing is emitted
until an application calls :func:`configure_logging` or configures the
``stepflow`` logger itself.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

import msgspec

_RESERVED_LOG_RECORD_ATTRS: set[str] = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_encoder = msgspec.json.Encoder(enc_hook=repr)


class JsonFormatter(logging.Formatter):
    """One JSON object per record. Attributes passed via ``extra`` land under ``"extra"``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return _encoder.encode(payload).decode("utf-8")


def configure_logging(level: str | int = "INFO", json: bool = True, stream: IO[str] | None = None) -> logging.Logger:
    """
    Attach a single handler to the ``stepflow`` logger.

    Calling it again replaces the previous handler instead of adding another.

    :param level: Level name or number
    :type level: str | int
    :param json: Emit JSON lines; otherwise a plain text format
    :type json: bool
    :param stream: Output stream, stderr by default
    :type stream: IO[str] | None
    :returns: The configured ``stepflow`` logger
    :rtype: logging.Logger
    """
    logger = logging.getLogger("stepflow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    if json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
