"""dictConfig logging for the analysis service, using uvicorn's formatters."""

import sys
from logging.config import dictConfig
from typing import Any

from app.core.config import settings

APP_LOGGERS = ("app", "app.api", "app.generation_logic", "app.services")

# Client libraries whose request-level chatter would drown the pipeline logs
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "hpack", "postgrest")


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Return the dictConfig for *level*; pipeline loggers get it, uvicorn stays at INFO."""
    level = level.upper()
    app_logger = {"handlers": ["pipeline"], "level": level, "propagate": False}
    loggers: dict[str, Any] = {
        "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
    }
    loggers.update({name: dict(app_logger) for name in APP_LOGGERS})
    loggers.update({name: {"handlers": ["default"], "level": "WARNING", "propagate": False} for name in NOISY_LOGGERS})

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(asctime)s [%(name)s] "%(request_line)s" %(status_code)s',
            },
        },
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "default", "stream": sys.stderr},
            "access": {"class": "logging.StreamHandler", "formatter": "access", "stream": sys.stdout},
            # Stage logs carry the [request_id] prefix set by the routes
            "pipeline": {"class": "logging.StreamHandler", "formatter": "default", "stream": sys.stdout},
        },
        "loggers": loggers,
    }


def setup_logging(level: str | None = None) -> None:
    """Configure logging at *level*, defaulting to ``settings.log_level``."""
    dictConfig(build_logging_config(level or settings.log_level))
