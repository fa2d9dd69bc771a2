"""JSON logging for the CRM service.

Every record is written as one JSON object per line on stdout. Only a known set
of structured fields is emitted, so an ``extra`` carrying a password or a full
payload never reaches the log stream.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from gasopper_crm.context import get_correlation_id
from gasopper_crm.core.config import get_settings


STRUCTURED_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "operation",
    "entity_id",
    "actor_id",
    "actor_role",
    "status",
    "error",
)
MAX_ERROR_LENGTH = 500
QUIET_LOGGERS = ("uvicorn.access",)

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class CorrelationIdFilter(logging.Filter):
    """Fills in the correlation id for records built before the factory was installed."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        fields = {name: getattr(record, name) for name in STRUCTURED_FIELDS if hasattr(record, name)}
        error = fields.get("error")
        if isinstance(error, str):
            fields["error"] = error[:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        if self.service:
            payload["service"] = self.service
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_gasopper_configured", False):
        return

    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter(service=settings.app_name))
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    root_logger._gasopper_configured = True  # type: ignore[attr-defined]
