"""JSON logging for the assistant service.

Structured fields travel in ``extra={"context": {...}}``. User identifiers
are passed through ``redact_id`` before they reach a record.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

REDACTED_ID_LENGTH = 8

# Client libraries that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "twilio.http_client", "anthropic")


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class LoggerAdapter(logging.LoggerAdapter):
    """Binds context to every record; a ``context=`` keyword adds to it per call."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        bound = self.extra or {}
        if context or bound:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": {**bound, **(context or {})}}
        return msg, kwargs


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Replace root handlers with a single JSON handler. Safe to call again."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"assistant.{name}")


def redact_id(value: Optional[Any]) -> str:
    if value is None:
        return ""
    return str(value)[:REDACTED_ID_LENGTH]
