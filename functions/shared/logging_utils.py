"""
Structured logging utilities for CloudWatch Logs Insights.
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

# Context variable for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Logging sink consumed by the collectors: (level, message, context) -> None
LogSink = Callable[[int, str, Dict[str, Any]], None]

_RESERVED_ATTRS = frozenset(
    (
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    )
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
            "function_name": os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        }

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure structured JSON logging.

    Call this at the start of your handler or script.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

    return root_logger


def set_request_id(event: Optional[dict] = None) -> str:
    """
    Extract or generate request ID and set in context.

    Args:
        event: Lambda event (may be None for scripts)

    Returns:
        Request ID string
    """
    event = event or {}
    request_id = (event.get("requestContext") or {}).get("requestId")

    if not request_id:
        headers = event.get("headers") or {}
        request_id = headers.get("x-request-id") or headers.get("X-Request-Id")

    if not request_id:
        request_id = str(uuid.uuid4())

    request_id_var.set(request_id)
    return request_id


def logger_sink(logger: logging.Logger) -> LogSink:
    """
    Adapt a standard logger to the collectors' fire-and-forget log sink.

    The returned sink never raises. Context keys that clash with LogRecord
    attributes are prefixed with ``ctx_``.
    """

    def sink(level: int, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        extra = {
            (f"ctx_{key}" if key in _RESERVED_ATTRS else key): value
            for key, value in (context or {}).items()
        }
        try:
            logger.log(level, message, extra=extra)
        except Exception as e:
            # Don't fail the collection if logging fails
            sys.stderr.write(f"log sink failure: {e}\n")

    return sink


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    latency_ms: float,
    error: Optional[str] = None,
    error_class: Optional[str] = None,
) -> None:
    """Log external service call. ``error_class`` is the triage class of a failure."""
    level = logging.INFO if success else logging.WARNING
    logger.log(
        level,
        f"External call to {service}: {operation} -> {'success' if success else 'failed'}",
        extra={
            "service": service,
            "operation": operation,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
            "error_class": error_class,
        },
    )
