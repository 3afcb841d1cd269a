"""
Process-wide logging setup driven by LoggingSettings.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from .config import Settings, get_settings

_LOGGER_CONFIGURED = False

# Third-party loggers that are chatty at INFO during normal ingestion.
_QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore")


def _resolve_log_level(level_name: str) -> int:
    """Translate a level name such as "debug" into its numeric constant."""

    numeric_level = logging.getLevelName(level_name.upper())
    if isinstance(numeric_level, int):
        return numeric_level
    raise ValueError(f"Unsupported log level: {level_name}")


def _build_logging_config(settings: Settings) -> dict[str, Any]:
    log_settings = settings.logging
    log_settings.directory.mkdir(parents=True, exist_ok=True)
    level = _resolve_log_level(log_settings.level)
    quiet_level = max(level, logging.WARNING)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": log_settings.format}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": level,
                "formatter": "standard",
                "filename": str(log_settings.directory / log_settings.file_name),
                "encoding": "utf-8",
                "maxBytes": log_settings.max_bytes,
                "backupCount": log_settings.backup_count,
            },
        },
        "loggers": {name: {"level": quiet_level} for name in _QUIET_LOGGERS},
        "root": {"level": level, "handlers": ["console", "file"]},
    }


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Apply the logging dictConfig once and return the service logger.

    Worker and scheduler entry points both call this; only the first call
    in a process installs handlers.
    """

    global _LOGGER_CONFIGURED

    runtime_settings = settings or get_settings()
    if not _LOGGER_CONFIGURED:
        dictConfig(_build_logging_config(runtime_settings))
        _LOGGER_CONFIGURED = True

    logger = logging.getLogger(runtime_settings.app.name)
    logger.setLevel(_resolve_log_level(runtime_settings.logging.level))
    return logger


__all__ = ["setup_logging"]
