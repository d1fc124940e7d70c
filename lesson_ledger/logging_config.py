"""
Logging setup for the ledger service.
"""

import logging
import logging.config
from typing import Optional

from .config import Settings, get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_logging_config(settings: Settings) -> dict:
    level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "level": level,
                "class": "logging.StreamHandler",
                "formatter": "standard",
            },
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
        "loggers": {
            "lesson_ledger": {"level": level},
            "uvicorn.access": {
                "handlers": ["console"],
                "level": "WARNING" if not settings.is_development() else "INFO",
                "propagate": False,
            },
        },
    }


def setup_logging(settings: Optional[Settings] = None) -> None:
    logging.config.dictConfig(build_logging_config(settings or get_settings()))
