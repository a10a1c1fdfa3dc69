"""
Structured logging for the cache service.

Loggers write JSON lines (python-json-logger) by default, or plain text when
SOCRATACACHE_LOG_FORMAT=text. Context such as resource_id / dataset_id is
passed through ``extra=`` and ends up as top-level JSON fields.
"""
import logging
import sys
import time
from typing import Optional

from pythonjsonlogger import jsonlogger

from .config import settings

ROOT_LOGGER_NAME = "socrata_cache"


class CacheJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, logger, module and function."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        if log_record.get("level"):
            log_record["level"] = log_record["level"].upper()
        else:
            log_record["level"] = record.levelname

        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: Optional[str] = None,
) -> logging.Logger:
    """
    Configure a logger with a single stdout handler.

    Args:
        name: Logger name
        level: Log level name, defaults to settings.LOG_LEVEL
        format_type: "json" or "text", defaults to settings.LOG_FORMAT

    Returns:
        Configured logger instance
    """
    log_level = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if (format_type or settings.LOG_FORMAT) == "json":
        formatter = CacheJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child of the service logger, configuring the root one on first use.

    Child loggers propagate to the "socrata_cache" logger, so pytest's caplog
    and any handler attached there see every message.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger(ROOT_LOGGER_NAME)

    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class log_operation:
    """
    Context manager logging the start, end and duration of an operation.

    Usage:
        with log_operation("Retention cleanup", logger=logger, job="retention"):
            ...
    """

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger(ROOT_LOGGER_NAME)
        self.extra_fields = extra_fields
        self.start_time = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields},
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self.start_time

        if exc_type is None:
            self.logger.info(
                f"Completed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_seconds": round(duration, 3),
                    "status": "success",
                    **self.extra_fields,
                },
            )
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_seconds": round(duration, 3),
                    "status": "error",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                    **self.extra_fields,
                },
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False  # Don't suppress exceptions
