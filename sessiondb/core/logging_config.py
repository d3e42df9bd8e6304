"""
Structured logging configuration for sessiondb.

Provides JSON-formatted logging with correlation IDs and keeps session
identifiers and payloads out of log output.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar

from sessiondb.core.config import settings

# Context variable for correlation ID (used across request lifecycle)
correlation_id_ctx: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'message',
}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging with redaction of sensitive fields.
    """

    SENSITIVE_KEYWORDS = {
        'password', 'secret', 'token', 'credential', 'cookie',
        'payload', 'session_data', 'private',
    }

    def __init__(self, include_sensitive: bool = False):
        """
        Initialize structured formatter.

        Args:
            include_sensitive: Whether to include potentially sensitive data in logs
        """
        super().__init__()
        self.include_sensitive = include_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_ctx.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if not self.include_sensitive and self._is_sensitive_field(key):
                extra_fields[key] = "[REDACTED]"
            else:
                extra_fields[key] = value

        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=self._json_default)

    def _is_sensitive_field(self, key: str) -> bool:
        """Check if field name suggests sensitive data"""
        key_lower = key.lower()
        return any(keyword in key_lower for keyword in self.SENSITIVE_KEYWORDS)

    def _json_default(self, obj: Any) -> str:
        """JSON serializer for objects not serializable by default"""
        if isinstance(obj, datetime):
            return obj.isoformat()
        return str(obj)


def setup_logging(
    log_level: str = "INFO",
    enable_json: bool = True,
    log_file: Optional[str] = None,
    include_sensitive: bool = False
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json: Whether to use JSON formatting
        log_file: Optional file path for logging
        include_sensitive: Whether to include sensitive data in logs
    """

    # Clear any existing handlers
    logging.root.handlers.clear()

    if enable_json:
        formatter: logging.Formatter = StructuredFormatter(include_sensitive=include_sensitive)
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_correlation_id() -> str:
    """
    Get or create a correlation ID for request tracking.

    Returns:
        str: Correlation ID for current context
    """
    correlation_id = correlation_id_ctx.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        correlation_id_ctx.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for current context."""
    correlation_id_ctx.set(correlation_id)


def mask_session_id(session_id: Optional[str]) -> str:
    """Shorten a session identifier so that logs never carry a usable one."""
    if not session_id:
        return "<none>"
    return f"{session_id[:6]}****"


def init_application_logging() -> None:
    """Initialize logging from application settings"""

    is_dev = settings.DEV_MODE
    log_level = "DEBUG" if is_dev else settings.LOG_LEVEL

    setup_logging(
        log_level=log_level,
        enable_json=settings.LOG_JSON and not is_dev,
        log_file=settings.LOG_FILE,
        include_sensitive=is_dev  # Only include sensitive data in dev mode
    )

    logger = logging.getLogger("sessiondb.startup")
    logger.info(
        "Structured logging initialized",
        extra={
            "dev_mode": is_dev,
            "json_logging": settings.LOG_JSON and not is_dev,
            "log_level": log_level,
            "correlation_id": get_correlation_id()
        }
    )
