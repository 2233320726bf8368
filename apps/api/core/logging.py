"""
Logging setup.

One stdout handler on the root logger. Production (or LOG_FORMAT=json) gets
one JSON object per line; development gets a readable line. Business events
attach context with ``extra={"extra_fields": {...}}``, e.g. member_id,
gym_id, balance after a debit, and both formats carry it.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

SERVICE_NAME = "fitflow-api"

# Libraries that are chatty at INFO; request logging in main.py replaces uvicorn's access log
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "urllib3": logging.WARNING,
}


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "extra_fields", None) or {}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, context fields merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "environment": settings.ENVIRONMENT,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_data.update(_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Decimal amounts and UUIDs fall back to str
        return json.dumps(log_data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text line with the context fields appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            line += " | " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


def build_formatter() -> logging.Formatter:
    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        return JSONFormatter()
    return ContextTextFormatter()


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Install the stdout handler on the root logger. Safe to call again."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(build_formatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    return root_logger


setup_logging()
