"""
Logging setup for the relay service.

Console only. Upstream HTTP client chatter is kept at WARNING so request
logs stay readable while a long download is being relayed.
"""

import logging
import logging.config
from typing import Any

from .settings import LOG_LEVEL


def setup_logging(level: str | None = None) -> logging.Logger:
    level = (level or LOG_LEVEL).upper()
    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "backend": {"level": level, "handlers": ["console"], "propagate": False},
            "httpx": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "httpcore": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": level, "handlers": ["console"]},
    }
    logging.config.dictConfig(config)
    return logging.getLogger("backend")
