"""
Standardized exception handling for API-first design.

Provides consistent error responses across all endpoints with:
- Unique error codes for client-side handling
- Request tracking via request_id
- Detailed error messages with context
- HTTP status code alignment
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    """Standardized error response format."""
    code: str
    message: str
    status_code: int
    timestamp: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Wrapper for error responses."""
    error: ErrorDetail


# =============================================================================
# Base Exception Classes
# =============================================================================

class AppException(Exception):
    """Base exception for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message or self.message
        self.details = details
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert exception to standardized error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.error_code,
                message=self.message,
                status_code=self.status_code,
                timestamp=_utc_timestamp(),
                request_id=request_id,
                details=self.details,
            )
        )


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class ValidationException(AppException):
    """Invalid input data."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    message = "Invalid input data"


class RateLimitException(AppException):
    """Rate limit exceeded."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMIT_EXCEEDED"
    message = "Rate limit exceeded. Please retry later."


# =============================================================================
# Domain-Specific Exceptions
# =============================================================================

class InvalidAnalysisOptionsException(ValidationException):
    """Analysis options rejected before any computation starts."""
    error_code = "INVALID_ANALYSIS_OPTIONS"
    message = "Invalid analysis options"

    def __init__(self, option: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid value for '{option}': {reason}",
            details={"option": option, "value": value, "reason": reason},
        )


class AnalysisCancelledException(AppException):
    """Analysis abandoned by the caller or stopped by its deadline."""
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    error_code = "ANALYSIS_CANCELLED"
    message = "Analysis was cancelled"

    REASON_CANCELLED = "cancelled"
    REASON_DEADLINE = "deadline_exceeded"

    def __init__(self, reason: str = REASON_CANCELLED, stage: Optional[str] = None):
        self.reason = reason
        message = (
            "Analysis deadline exceeded"
            if reason == self.REASON_DEADLINE
            else "Analysis was cancelled"
        )
        details: Dict[str, Any] = {"reason": reason}
        if stage:
            details["stage"] = stage
        super().__init__(message=message, details=details)


# =============================================================================
# Configuration Exception
# =============================================================================

class ConfigurationException(AppException):
    """Configuration error - should fail at startup."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "CONFIGURATION_ERROR"
    message = "Application configuration error"


# =============================================================================
# Exception Handler Registration
# =============================================================================

def get_request_id(request: Request) -> str:
    """Extract or generate request ID."""
    return getattr(request.state, "request_id", None) or str(uuid4())


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle all application exceptions with standardized format."""
    request_id = get_request_id(request)
    response = exc.to_response(request_id=request_id)

    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}", extra={"request_id": request_id})
    else:
        logger.info(f"{exc.error_code}: {exc.message}", extra={"request_id": request_id})

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
        headers={"X-Request-ID": request_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = get_request_id(request)

    logger.exception(f"Unhandled exception: {exc}", extra={"request_id": request_id})

    error = ErrorResponse(
        error=ErrorDetail(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
            status_code=500,
            timestamp=_utc_timestamp(),
            request_id=request_id,
        )
    )

    return JSONResponse(
        status_code=500,
        content=error.model_dump(),
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
