"""
Logging setup: plain text for development, JSON lines for deployed environments.
"""

import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from .config import Settings, get_settings


class LedgerJsonFormatter(JsonFormatter):
    environment = "development"

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = self.environment

        if hasattr(record, "member_id"):
            log_record["member_id"] = record.member_id


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    LedgerJsonFormatter.environment = settings.environment
    formatter = "json" if settings.json_logs else "standard"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": LedgerJsonFormatter,
                "format": "%(timestamp)s %(level)s %(logger)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "lesson_ledger": {
                "handlers": ["console"],
                "level": settings.log_level.upper(),
                "propagate": False,
            },
        },
    }


def configure_logging(settings: Optional[Settings] = None) -> None:
    logging.config.dictConfig(build_logging_config(settings or get_settings()))
