from __future__ import annotations

import logging
import logging.config
import os
import sys
from typing import Any, Dict, Optional


_QUIET_LOGGERS = ("apscheduler", "apscheduler.scheduler", "apscheduler.executors.default")


def _log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def _scheduler_log_level() -> str:
    return os.getenv("LOG_SCHEDULER_LEVEL", "WARNING").upper()


def _log_destination() -> str:
    return os.getenv("LOG_DESTINATION", "stdout").lower()


def _log_file_path() -> Optional[str]:
    return os.getenv("LOG_FILE")


def _handler(destination: str, level: str) -> Dict[str, Any]:
    if destination == "file":
        log_file = _log_file_path()
        if not log_file:
            raise RuntimeError("LOG_FILE is required when LOG_DESTINATION=file")
        return {
            "class": "logging.handlers.WatchedFileHandler",
            "level": level,
            "filename": log_file,
            "formatter": "standard",
        }
    if destination not in ("stdout", "stderr"):
        raise RuntimeError(f"Unsupported LOG_DESTINATION: {destination}")
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "stream": sys.stdout if destination == "stdout" else sys.stderr,
        "formatter": "standard",
    }


def configure_logging() -> None:
    """Route the event_reminders.* loggers and APScheduler through one handler."""
    level = _log_level()
    scheduler_level = _scheduler_log_level()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
                }
            },
            "handlers": {"default": _handler(_log_destination(), level)},
            "loggers": {
                "event_reminders": {"level": level, "propagate": True},
                **{name: {"level": scheduler_level} for name in _QUIET_LOGGERS},
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )
