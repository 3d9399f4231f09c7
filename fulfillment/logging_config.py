"""Logging configuration.

Provides JSON-formatted logs with:
- Category detection (auth, orders, downloads, polls, http, system)
- Redaction of bearer tokens and authorization headers
- Optional rotating file handlers for all logs and errors only
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import TextIO

SENSITIVE_HEADERS = {"authorization", "stripe-signature", "cookie", "set-cookie"}

_BEARER_RE = re.compile(r"(Bearer|Ghost)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of ``headers`` that is safe to log.

    Authorization values keep their scheme (``Bearer redacted``).
    """
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() not in SENSITIVE_HEADERS:
            redacted[key] = value
        elif key.lower() == "authorization" and " " in value:
            redacted[key] = f"{value.split(' ', 1)[0]} redacted"
        else:
            redacted[key] = "redacted"
    return redacted


def redact_text(text: str) -> str:
    """Mask bearer-style credentials inside free text."""
    return _BEARER_RE.sub(lambda m: f"{m.group(1)} redacted", text)


class RedactingFilter(logging.Filter):
    """Masks credentials in the final message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for log aggregation."""

    # Map logger names to categories
    CATEGORY_MAP = {
        "fulfillment.auth": "auth",
        "fulfillment.orders": "orders",
        "fulfillment.payments": "orders",
        "fulfillment.membership": "orders",
        "fulfillment.routes.orders": "orders",
        "fulfillment.downloads": "downloads",
        "fulfillment.routes.downloads": "downloads",
        "fulfillment.polls": "polls",
        "fulfillment.routes.polls": "polls",
        "fulfillment.mail": "mail",
        "fulfillment.main": "http",
        "fulfillment.routes": "http",
        "fulfillment.config": "system",
        "fulfillment.catalog": "system",
        "uvicorn": "http",
        "fastapi": "http",
    }

    # Standard LogRecord fields to exclude from 'extra'
    STANDARD_FIELDS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "user_id",
    }

    def _get_category(self, logger_name: str) -> str:
        """Determine category from logger name (longest prefix wins)."""
        best = ""
        category = "system"
        for prefix, cat in self.CATEGORY_MAP.items():
            if logger_name.startswith(prefix) and len(prefix) > len(best):
                best, category = prefix, cat
        return category

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_record: dict = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "category": self._get_category(record.name),
            "logger": record.name,
            "message": redact_text(record.getMessage()),
        }

        if getattr(record, "user_id", None) is not None:
            log_record["user_id"] = record.user_id

        # Collect extra fields
        extra = {}
        for key, value in record.__dict__.items():
            if key not in self.STANDARD_FIELDS and not key.startswith("_"):
                # Try to serialize, fall back to str
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)
        if extra:
            log_record["extra"] = extra

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


class ErrorFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def configure_logging(
    *,
    json_format: bool = True,
    log_level: int = logging.INFO,
    log_file: str | None = None,
    error_log_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure application logging.

    Args:
        json_format: Use JSON formatting (True for production, False for dev)
        log_level: Minimum log level
        log_file: Path to main log file (None for stream only)
        error_log_file: Path to error-only log file (None to skip)
        stream: Stream to write to (default: sys.stderr)
    """
    import sys

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)5s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    redacting_filter = RedactingFilter()

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(redacting_filter)
    root_logger.addHandler(stream_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=100 * 1024 * 1024,  # 100MB
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redacting_filter)
        root_logger.addHandler(file_handler)

    if error_log_file:
        Path(error_log_file).parent.mkdir(parents=True, exist_ok=True)
        error_handler = RotatingFileHandler(
            error_log_file,
            maxBytes=100 * 1024 * 1024,  # 100MB
            backupCount=14,  # Keep longer for errors
            encoding="utf-8",
        )
        error_handler.setFormatter(formatter)
        error_handler.addFilter(ErrorFilter())
        error_handler.addFilter(redacting_filter)
        root_logger.addHandler(error_handler)

    # Silence noisy loggers
    noisy_loggers = [
        "httpcore",
        "httpx",
        "urllib3",
        "botocore",
        "boto3",
        "stripe",
        "aiosqlite",
        "sqlalchemy.engine",
    ]
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(json_format: bool, log_file: str = "", error_log_file: str = "") -> None:
    """Configure logging from settings values."""
    configure_logging(
        json_format=json_format,
        log_level=logging.INFO,
        log_file=log_file or None,
        error_log_file=error_log_file or None,
    )
