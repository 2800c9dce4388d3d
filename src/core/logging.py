"""Structured JSON logging configuration."""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.core.config import Settings

APP_LOGGER_NAME = "spoiler_companion"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Keys whose values never reach the log stream
SENSITIVE_FIELDS = {
    "password",
    "api_key",
    "secret",
    "token",
    "authorization",
    "anthropic_api_key",
    "openai_api_key",
    "opensubtitles_api_key",
    "tmdb_api_key",
}

# Attributes every LogRecord carries; anything else came in through `extra=`
_RECORD_ATTRIBUTES = frozenset(
    {
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
    }
)

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
    "anthropic": logging.WARNING,
    "sentence_transformers": logging.WARNING,
    "rq.worker": logging.INFO,
}


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()


def redact_sensitive_data(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact sensitive fields from a dictionary.

    Args:
        data: Dictionary to redact

    Returns:
        Dictionary with sensitive values replaced with "[REDACTED]"
    """
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if any(sensitive in key.lower() for sensitive in SENSITIVE_FIELDS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        if record.pathname:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
        }
        if extra_fields:
            log_data["extra"] = redact_sensitive_data(extra_fields)

        return json.dumps(log_data, default=str)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests with request ID tracking."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Log request start/finish and echo the request ID header.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            HTTP response
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)

        logger = logging.getLogger(f"{APP_LOGGER_NAME}.request")
        start_time = datetime.now(UTC)
        path = str(request.url.path)

        logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": path,
                    "duration_ms": _elapsed_ms(start_time),
                    "error": str(e),
                },
            )
            raise
        finally:
            request_id_var.set(None)

        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": _elapsed_ms(start_time),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response


def _elapsed_ms(start_time: datetime) -> float:
    return round((datetime.now(UTC) - start_time).total_seconds() * 1000, 2)


def setup_logging(settings: Settings) -> None:
    """Configure structured logging for the application.

    Args:
        settings: Application settings
    """
    log_level = getattr(logging, settings.app_log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(JSONFormatter())
    stdout_handler.setLevel(log_level)
    root_logger.addHandler(stdout_handler)

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(APP_LOGGER_NAME).setLevel(log_level)


def setup_request_logging(app: FastAPI) -> None:
    """Add request logging middleware to FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestLoggingMiddleware)
