"""Process-wide logging setup."""

from __future__ import annotations

import logging
import logging.config
from typing import Optional

from app.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class LoggingConfig:
    """dictConfig wrapper; call configure() once at startup."""

    _configured = False

    def __init__(self, level: Optional[str] = None) -> None:
        self.level = (level or get_settings().log_level).upper()

    def as_dict(self) -> dict:
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "loggers": {
                "app": {"level": self.level},
                "uvicorn.access": {"level": "WARNING"},
            },
            "root": {"handlers": ["console"], "level": "WARNING"},
        }

    def configure(self) -> None:
        logging.config.dictConfig(self.as_dict())
        LoggingConfig._configured = True


def get_logger(name: str) -> logging.Logger:
    if not LoggingConfig._configured:
        LoggingConfig().configure()
    return logging.getLogger(name)
