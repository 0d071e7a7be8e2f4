"""
Structured logging configuration.
JSON lines in production so log shippers can index payment events,
plain text everywhere else.
"""

import sys
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pitrace.config import Settings, settings as default_settings

# Fields callers attach with logger.info(..., extra={...})
CONTEXT_FIELDS = ("payment_id", "status", "identity")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "celery.beat")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, tagged with the service it came from."""

    def __init__(self, app_name: str = "pi-trace", env: str = "production"):
        super().__init__()
        self.app_name = app_name
        self.env = env

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "app": self.app_name,
            "env": self.env,
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_obj[key] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    settings = settings or default_settings
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if settings.is_production:
        console_handler.setFormatter(JSONFormatter(settings.app_name, settings.app_env))
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
