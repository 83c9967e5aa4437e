"""
Rate limiting configuration for API endpoints.

Uses slowapi for request throttling based on client IP.
"""

import re

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from geo_analysis.core.config import settings
from geo_analysis.core.exceptions import RateLimitException, get_request_id


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key from request.

    Dashboards usually sit behind one proxy, so a forwarded client
    address wins over the socket peer when present.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["200/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


class RateLimits:
    """Rate limit presets for different endpoint types."""

    # Full analysis runs clustering, forecasting and coverage
    ANALYZE = settings.RATE_LIMIT_ANALYZE

    # Coverage-only re-runs follow the radius slider
    COVERAGE = settings.RATE_LIMIT_COVERAGE

    HEALTH = "60/minute"
    DEFAULT = "200/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Custom handler for rate limit exceeded errors.

    Returns the standard error envelope with retry information.
    """
    retry_after = 60
    if getattr(exc, "detail", None):
        match = re.search(r"(\d+)\s*second", str(exc.detail))
        if match:
            retry_after = int(match.group(1))

    request_id = get_request_id(request)
    error = RateLimitException(
        message=f"Rate limit exceeded: {exc.detail}" if getattr(exc, "detail", None) else None,
        details={"retry_after_seconds": retry_after},
    )

    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response(request_id=request_id).model_dump(),
        headers={"Retry-After": str(retry_after), "X-Request-ID": request_id},
    )


def setup_rate_limiting(app) -> None:
    """
    Configure rate limiting for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
