"""Structured logging configuration."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Tuple


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs JSON-structured log records."""

    def format(self, record: logging.LogRecord) -> str:
        log_dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra_fields"):
            log_dict.update(record.extra_fields)

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that collects keyword context into ``extra_fields``."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> Tuple[str, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        fields.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"extra_fields": fields}
        return msg, kwargs


_configured = False


def configure_logging(level: int = logging.INFO, structured: bool = True) -> None:
    """Install a single stderr handler on the root logger. Safe to call repeatedly."""
    global _configured
    if _configured:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)
    _configured = True


def get_logger(name: str, **extra: Any) -> StructuredLogger:
    """Get a structured logger with optional default extra fields."""
    return StructuredLogger(logging.getLogger(name), extra)
