"""
Structured logging configuration.

Features:
- JSON logging format for production
- Request ID tracking
- Structured extra fields for analysis runs
- Performance timing
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from geo_analysis.core.config import settings

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
analysis_id_var: ContextVar[str] = ContextVar("analysis_id", default="")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        analysis_id = analysis_id_var.get()
        if analysis_id:
            log_data["analysis_id"] = analysis_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        request_id = request_id_var.get()
        analysis_id = analysis_id_var.get()

        context = ""
        if request_id:
            context += f"[{request_id[:8]}]"
        if analysis_id:
            context += f"[run:{analysis_id[:8]}]"

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = (
            f"{timestamp} {record.levelname:8} {context:20} "
            f"{record.name}:{record.funcName}:{record.lineno} - {record.getMessage()}"
        )
        if hasattr(record, "extra_fields") and record.extra_fields:
            pairs = " ".join(f"{k}={v}" for k, v in record.extra_fields.items())
            line = f"{line} | {pairs}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (for production)
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if json_format or not settings.DEBUG:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(HumanFormatter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    loggers_config = {
        "geo_analysis": level,
        "uvicorn": "INFO",
        "uvicorn.access": "INFO",
        "httpx": "WARNING",
    }

    for logger_name, logger_level in loggers_config.items():
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, logger_level.upper()))


class StructuredLogger:
    """Enhanced logger with context support."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args,
        extra: Optional[dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        if not self._logger.isEnabledFor(level):
            return
        # frame 0 is _log, frame 1 the level method, frame 2 its caller
        caller = sys._getframe(2)
        record = self._logger.makeRecord(
            self._logger.name,
            level,
            caller.f_code.co_filename,
            caller.f_lineno,
            msg,
            args,
            sys.exc_info() if exc_info else None,
            caller.f_code.co_name,
        )
        if extra:
            record.extra_fields = extra
        self._logger.handle(record)

    def debug(self, msg: str, *args, extra: Optional[dict[str, Any]] = None):
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args, extra: Optional[dict[str, Any]] = None):
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args, extra: Optional[dict[str, Any]] = None):
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args, extra: Optional[dict[str, Any]] = None):
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args, extra: Optional[dict[str, Any]] = None):
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger."""
    return StructuredLogger(name)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request logging and tracking.

    Features:
    - Assigns unique request ID
    - Logs request/response
    - Tracks request timing
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        request.state.request_id = request_id

        logger = get_logger("geo_analysis.requests")

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                f"Request failed: {request.method} {request.url.path}",
                extra={"error": str(e)},
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Request-ID"] = request_id

        return response
