"""
Logging configuration.
Console output plus a rotating file handler; JSON records when LOG_JSON is set.
"""
import logging.config
import os
from typing import Any, Dict, Optional

from bulletin.config import Settings, settings as default_settings


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    formatter = "json" if settings.LOG_JSON else "standard"
    handlers: Dict[str, Any] = {
        "console": {
            "level": "DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
            "class": "logging.StreamHandler",
            "formatter": formatter,
        }
    }
    if settings.LOG_FILE:
        handlers["file"] = {
            "level": settings.LOG_LEVEL,
            "class": "logging.handlers.RotatingFileHandler",
            "filename": settings.LOG_FILE,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "formatter": formatter,
            "encoding": "utf8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers),
                "level": settings.LOG_LEVEL,
            },
            "uvicorn.access": {
                "level": "WARNING",
            },
        },
    }


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Apply the logging configuration once at startup."""
    settings = settings or default_settings
    if settings.LOG_FILE:
        log_dir = os.path.dirname(settings.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings))
