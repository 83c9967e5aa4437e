"""
Sentry integration for error tracking and performance monitoring.

Client-side mistakes (validation failures, rate limits) and abandoned
analyses are expected traffic and never reported.
"""

import logging
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from geo_analysis.core.config import settings

logger = logging.getLogger(__name__)

_IGNORED_EXCEPTIONS = (
    "AnalysisCancelledException",
    "InvalidAnalysisOptionsException",
    "RateLimitExceeded",
    "RequestValidationError",
)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Call this once during application startup.

    Returns:
        True if Sentry was initialized, False otherwise.
    """
    dsn = settings.SENTRY_DSN
    if not dsn:
        logger.info("SENTRY_DSN not configured, error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=settings.ENVIRONMENT,
            release=f"{settings.APP_NAME}@{settings.APP_VERSION}",
            traces_sample_rate=0.1 if settings.ENVIRONMENT == "production" else 1.0,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR,
                ),
            ],
            send_default_pii=False,
            before_send=_before_send,
            before_send_transaction=_before_send_transaction,
            max_breadcrumbs=50,
            attach_stacktrace=True,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")
    return True


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """Drop expected errors before they reach Sentry."""
    if "exc_info" in hint:
        exc_type, exc_value, _ = hint["exc_info"]

        if exc_type.__name__ in _IGNORED_EXCEPTIONS:
            return None

        status_code = getattr(exc_value, "status_code", None)
        if status_code and 400 <= status_code < 500:
            return None

    return event


def _before_send_transaction(event: dict, hint: dict) -> Optional[dict]:
    """Skip health check and metrics transactions."""
    transaction_name = event.get("transaction", "")
    if any(path in transaction_name for path in ["/health", "/metrics", "/docs"]):
        return None

    return event


def set_analysis_context(analysis: str, **tags: Any) -> None:
    """Tag the current scope with analysis parameters."""
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_tag("analysis", analysis)
    for key, value in tags.items():
        sentry_sdk.set_tag(key, str(value))
