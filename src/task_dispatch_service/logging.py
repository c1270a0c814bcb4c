"""
Structured JSON logging for the task dispatch service.

Every module logs through ``get_logger(__name__)``; ``setup_logging``
attaches stdout and daily log file handlers to the package logger.
Context goes in ``extra={...}`` and is emitted under the ``extra`` key.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

PACKAGE_LOGGER_NAME = "task_dispatch_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the service name."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "service": self._service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS
        }
        if context:
            entry["extra"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DailyLogFileHandler(TimedRotatingFileHandler):
    """Writes to ``<directory>/YYYY-MM-DD.log`` and switches files at UTC midnight."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        super().__init__(self._todays_path(), when="midnight", utc=True, encoding="utf-8")

    def _todays_path(self) -> str:
        return str(self._directory / f"{datetime.now(tz=UTC):%Y-%m-%d}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream is not None:
            self.stream.close()
        self.baseFilename = os.path.abspath(self._todays_path())
        self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, service_name: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter(service_name))
    logger.addHandler(handler)


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Configure the package logger. Safe to call again; old handlers are closed.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_name = level.upper()
    if level_name not in VALID_LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}"
        raise ValueError(msg)
    numeric_level = logging.getLevelNamesMapping()[level_name]

    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(numeric_level)
    logger.propagate = False

    _attach(logger, logging.StreamHandler(sys.stdout), numeric_level, service_name)
    _attach(logger, DailyLogFileHandler(log_directory), numeric_level, service_name)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger under the package namespace."""
    if name == PACKAGE_LOGGER_NAME or name.startswith(f"{PACKAGE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER_NAME}.{name}")
