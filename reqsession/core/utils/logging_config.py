"""
Structured logging configuration for reqsession.

Provides JSON-formatted logging with per-request correlation IDs and
redaction of session identifiers and cookie values.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variable for correlation ID (set per request by the middleware)
correlation_id_ctx: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text', 'stack_info',
    'taskName',
}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    """

    def __init__(self, include_sensitive: bool = False):
        """
        Initialize structured formatter.

        Args:
            include_sensitive: Whether to include session ids, cookies and
                other sensitive extra fields unredacted
        """
        super().__init__()
        self.include_sensitive = include_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
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
            if key in _RESERVED_RECORD_FIELDS:
                continue
            if not self.include_sensitive and self._is_sensitive_field(key):
                extra_fields[key] = "[REDACTED]"
            else:
                extra_fields[key] = value

        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=self._json_default, ensure_ascii=False)

    def _is_sensitive_field(self, key: str) -> bool:
        """Check if field contains sensitive data"""
        sensitive_keywords = {
            'password', 'secret', 'key', 'token', 'credential',
            'session_id', 'cookie', 'private',
        }
        key_lower = key.lower()
        return any(keyword in key_lower for keyword in sensitive_keywords)

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
    logging.root.handlers.clear()

    if enable_json:
        formatter = StructuredFormatter(include_sensitive=include_sensitive)
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
    """
    Set correlation ID for current context.

    Args:
        correlation_id: Correlation ID to set
    """
    correlation_id_ctx.set(correlation_id)


def get_security_logger(name: str) -> logging.Logger:
    """Get a logger for security events."""
    return logging.getLogger(f"security.{name}")


def log_security_event(
    event_type: str,
    message: str,
    ip_address: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log a security event with structured data.

    Args:
        event_type: Type of security event (cookie_rejected, ...)
        message: Human-readable message
        ip_address: Optional client IP address
        extra_data: Additional structured data
    """
    logger = get_security_logger("events")

    security_data = {
        "event_type": event_type,
        "correlation_id": get_correlation_id(),
    }

    if ip_address:
        security_data["ip_address"] = ip_address
    if extra_data:
        security_data.update(extra_data)

    logger.warning(message, extra=security_data)


def log_cookie_rejected(reason: str, ip_address: Optional[str] = None) -> None:
    """Log an identifier cookie that failed verification."""
    log_security_event(
        "session_cookie_rejected",
        f"Session cookie rejected: {reason}",
        ip_address=ip_address,
    )


def init_session_logging(settings) -> None:
    """
    Initialize logging from ``SessionSettings``.

    Sensitive fields are only included when running at DEBUG level.
    """
    log_level = settings.log_level.upper()
    is_debug = log_level == "DEBUG"

    setup_logging(
        log_level=log_level,
        enable_json=settings.json_logs,
        include_sensitive=is_debug,
    )

    logger = logging.getLogger("reqsession.startup")
    logger.info(
        "Structured logging initialized",
        extra={
            "json_logging": settings.json_logs,
            "log_level": log_level,
            "store_backend": settings.backend,
        }
    )
