"""Structured JSON logging configuration."""

import logging
import sys
from contextvars import ContextVar
from typing import Any
from uuid import UUID

from pythonjsonlogger import jsonlogger

from examdesk.core.config import settings

# Set per request by RequestIDMiddleware
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Attempt context passed through ``extra``; dropped from the record when unset
ATTEMPT_FIELDS = ("attempt_id", "exam_id", "user_id", "question_id", "event")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter carrying request and attempt context."""

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["msg"] = record.getMessage()
        log_record["service"] = settings.PROJECT_NAME

        if not log_record.get("request_id"):
            request_id = request_id_var.get()
            if request_id:
                log_record["request_id"] = request_id

        for field in ATTEMPT_FIELDS:
            value = log_record.get(field)
            if value is None:
                log_record.pop(field, None)
            elif isinstance(value, UUID):
                log_record[field] = str(value)

        log_record.pop("message", None)
        log_record.pop("asctime", None)


def setup_logging() -> None:
    """Configure application logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root_logger.handlers.clear()

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    # Console handler (always JSON for consistency)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
