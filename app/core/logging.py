"""
Logging configuration

JSON lines on stdout (and a rotating file outside tests). Waitlist code
passes entry, slot and sweep identifiers through `extra=` so a single offer
can be followed across the request path and the sweeps.
"""

import logging
import logging.config
import json
import os
from datetime import datetime, timezone

from app.config import settings

CONTEXT_FIELDS = ("request_id", "entry_id", "slot_id", "job")

LOG_DIR = "logs"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            {field: str(getattr(record, field)) for field in CONTEXT_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _handlers() -> dict:
    console_formatter = "json" if settings.LOG_FORMAT == "json" else "plain"
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": console_formatter,
            "stream": "ext://sys.stdout",
        }
    }
    if not settings.is_testing:
        os.makedirs(LOG_DIR, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": os.path.join(LOG_DIR, "waitlist.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }
    return handlers


def setup_logging():
    handlers = _handlers()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"},
            "json": {"()": JSONFormatter},
        },
        "handlers": handlers,
        "loggers": {
            "app": {"level": settings.LOG_LEVEL, "handlers": list(handlers), "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            # Engine echo is controlled by DB_ECHO
            "sqlalchemy": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": settings.LOG_LEVEL, "handlers": ["console"]},
    })
