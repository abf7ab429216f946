"""
Logging configuration for the scheduling workers.

LOG_FORMAT=json emits one JSON object per line for log shipping; text is a
single-line human format for local runs. Both carry the scheduling context
passed through ``extra=`` (lead, job, quote, calendar event, worker).
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from shared.config import get_settings

CONTEXT_FIELDS = ("lead_id", "job_id", "quote_id", "calendar_id", "event_id", "worker")

# Customer handles never reach the logs in full
MASKED_FIELDS = ("phone", "email", "psid")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s%(context)s"


def mask_handle(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "***"
    return f"***{text[-4:]}"


def record_context(record: logging.LogRecord) -> dict[str, str]:
    """Collect the scheduling context attached to a record via ``extra=``."""
    context = {
        field: str(getattr(record, field))
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }
    for field in MASKED_FIELDS:
        if getattr(record, field, None):
            context[field] = mask_handle(getattr(record, field))
    return context


class JSONFormatter(logging.Formatter):
    """
    Render records as JSON: timestamp (ISO 8601, UTC), level, logger,
    message, context fields and the formatted exception when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


class ContextTextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        record.context = (
            " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]" if context else ""
        )
        return super().format(record)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "text":
        return ContextTextFormatter(TEXT_FORMAT)
    return JSONFormatter()


def configure_logging() -> None:
    """
    Install a single stderr handler on the root logger.

    Level and format come from LOG_LEVEL / LOG_FORMAT. Safe to call more
    than once: existing root handlers are replaced.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(build_formatter(settings.LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # googleapiclient logs every discovery fetch at INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    root_logger.info(f"Logging configured: level={settings.LOG_LEVEL}, format={settings.LOG_FORMAT}")
