"""
app/core/logging.py

Purpose: Logging configuration

- JSON logs in production, coloured logs in development
- Per-request context (request_id, user_id, order_id, payout_id,
  reference) that is safe across concurrent coroutines
- Paystack keys and bank account numbers are masked before output
"""

import logging
import re
import sys
import json
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict

from app.core.config import settings


CONTEXT_FIELDS = ("request_id", "user_id", "order_id", "payout_id", "reference")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

SECRET_KEY_PATTERN = re.compile(r"\bsk_(live|test)_[A-Za-z0-9]+")
ACCOUNT_NUMBER_PATTERN = re.compile(r"(?<![\w-])(\d{6})(\d{4})(?![\w-])")


def redact(text: str) -> str:
    """Masks Paystack secret keys and 10-digit account numbers."""
    text = SECRET_KEY_PATTERN.sub(r"sk_\1_****", text)
    return ACCOUNT_NUMBER_PATTERN.sub(r"******\2", text)


class ContextFilter(logging.Filter):
    """Copies the active LogContext onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON lines for production log collectors.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = str(getattr(record, field))

        if record.exc_info:
            log_data["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(log_data)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter for development environment.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        message = (
            f"{color}[{timestamp}] {record.levelname:<8}{self.RESET} "
            f"{record.name}: {redact(record.getMessage())}"
        )

        context = " ".join(
            f"{field}={getattr(record, field)}"
            for field in CONTEXT_FIELDS
            if hasattr(record, field)
        )
        if context:
            message += f" ({context})"

        if record.exc_info:
            message += "\n" + redact(self.formatException(record.exc_info))

        return message


def setup_logging():
    """
    Installs the stdout handler on the root logger.
    Uses JSON format in production, human-readable in development.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(StructuredFormatter() if settings.is_production else DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Third-party noise
    for name in ("httpx", "httpcore", "motor", "pymongo", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("storefront")
    logger.info(f"Logging configured (environment={settings.ENVIRONMENT}, level={settings.LOG_LEVEL})")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (usually __name__)
    """
    return logging.getLogger(f"storefront.{name}")


class LogContext:
    """
    Adds fields to every log record emitted inside the block.

    Usage:
        with LogContext(user_id="123", payout_id="abc"):
            logger.info("Initiating transfer")

    Contexts nest; inner values win. The context lives in a ContextVar,
    so concurrent requests never see each other's fields.
    """

    def __init__(self, **kwargs):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self._token = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
