"""Logging configuration for the StoreRec service.

Structured JSON logging for the API process and a request logging middleware
that tags every request with an id.
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_LOGGER = "storerec.api.main"

# Attributes every LogRecord carries; anything else arrived via ``extra``
STANDARD_ATTRS = frozenset(
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
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JSONFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON string with the standard fields plus any ``extra`` values.
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in STANDARD_ATTRS:
                log_data[key] = value

        # Sets, datetimes and enums fall back to their string form
        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    """Configure process-wide logging with JSON formatting.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Raises:
        ValueError: If ``log_level`` is not a known level name.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(JSONFormatter())
    root.addHandler(console_handler)

    # Quiet third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _request_fields(request: Request, request_id: str, **fields: Any) -> Dict[str, Any]:
    fields.update(request_id=request_id, method=request.method, path=request.url.path)
    return fields


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status code and duration of every request.

    The caller's X-Request-ID is reused when present and echoed back on the
    response so log lines can be joined with client traces.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start_time = time.time()
        request_logger = logging.getLogger(REQUEST_LOGGER)

        request_logger.debug(
            "Request received",
            extra=_request_fields(
                request,
                request_id,
                query=str(request.query_params) or None,
                client=request.client.host if request.client else None,
            ),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.exception(
                "Unhandled error while serving request",
                extra=_request_fields(
                    request,
                    request_id,
                    error_type=type(e).__name__,
                    duration_ms=_elapsed_ms(start_time),
                ),
            )
            raise

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        request_logger.log(
            level,
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra=_request_fields(
                request,
                request_id,
                status_code=response.status_code,
                duration_ms=_elapsed_ms(start_time),
            ),
        )
        response.headers["X-Request-ID"] = request_id
        return response
