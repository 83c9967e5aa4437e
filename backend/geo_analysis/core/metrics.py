"""
Prometheus metrics for observability.

Exposes metrics for:
- HTTP request latency and counts
- Analysis engine performance
- Input data quality (excluded records)
"""

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from geo_analysis.core.config import settings

# ============================================================
# HTTP Metrics
# ============================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)


# ============================================================
# Analysis Metrics
# ============================================================

ANALYSIS_DURATION = Histogram(
    "geo_analysis_duration_seconds",
    "Geo analysis execution time",
    ["analysis", "problem_size"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

ANALYSIS_RUNS_TOTAL = Counter(
    "geo_analysis_runs_total",
    "Total geo analysis runs",
    ["analysis", "status"],
)

EXCLUDED_RECORDS_TOTAL = Counter(
    "geo_analysis_excluded_records_total",
    "Input records excluded for missing or unparseable coordinates",
    ["record_type"],
)

KMEANS_ITERATIONS = Histogram(
    "geo_kmeans_iterations",
    "K-means iterations until convergence or cap",
    buckets=[1, 2, 5, 10, 20, 50, 100],
)

COVERAGE_PERCENTAGE = Histogram(
    "geo_coverage_percentage",
    "Computed service coverage percentage",
    buckets=[10, 25, 50, 70, 90, 100],
)


# ============================================================
# Application Info
# ============================================================

APP_INFO = Info(
    "app",
    "Application information",
)
APP_INFO.info(
    {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
)


# ============================================================
# Middleware
# ============================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics.

    Tracks:
    - Request duration
    - Request count by endpoint and status
    - In-progress requests
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == settings.METRICS_PATH:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)

        HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

        start_time = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.perf_counter() - start_time

            HTTP_REQUEST_DURATION.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).observe(duration)

            HTTP_REQUEST_TOTAL.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()

            HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()

        return response

    def _normalize_path(self, path: str) -> str:
        """
        Normalize path by replacing dynamic segments with placeholders.

        /api/v1/geo-analysis/123 -> /api/v1/geo-analysis/{id}
        """
        parts = path.split("/")
        normalized = []

        for part in parts:
            if not part:
                continue
            if self._is_id(part):
                normalized.append("{id}")
            else:
                normalized.append(part)

        return "/" + "/".join(normalized) if normalized else "/"

    def _is_id(self, part: str) -> bool:
        """Check if path part is likely an ID."""
        if len(part) == 36 and part.count("-") == 4:
            return True
        if part.isdigit():
            return True
        return False


# ============================================================
# Helper Functions
# ============================================================


def size_bucket(size: int) -> str:
    """Bucket a customer count into a low-cardinality label."""
    if size <= 10:
        return "1-10"
    elif size <= 100:
        return "11-100"
    elif size <= 1000:
        return "101-1000"
    elif size <= 10000:
        return "1001-10000"
    else:
        return "10000+"


def track_analysis_execution(
    analysis: str,
    problem_size: int,
):
    """
    Context manager to track an analysis run.

    Usage:
        with track_analysis_execution("coverage", len(customers)):
            result = coverage(customers, service_points, radius_km)

    Cancelled runs are counted with status "cancelled", other
    exceptions with status "error".
    """
    from geo_analysis.core.exceptions import AnalysisCancelledException

    class AnalysisTracker:
        def __init__(self):
            self.start_time = None

        def __enter__(self):
            self.start_time = time.perf_counter()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            duration = time.perf_counter() - self.start_time

            ANALYSIS_DURATION.labels(
                analysis=analysis,
                problem_size=size_bucket(problem_size),
            ).observe(duration)

            if exc_type is None:
                run_status = "success"
            elif issubclass(exc_type, AnalysisCancelledException):
                run_status = "cancelled"
            else:
                run_status = "error"

            ANALYSIS_RUNS_TOTAL.labels(analysis=analysis, status=run_status).inc()
            return False

    return AnalysisTracker()


def record_excluded_records(record_type: str, count: int) -> None:
    """Count records dropped at the input boundary."""
    if count > 0:
        EXCLUDED_RECORDS_TOTAL.labels(record_type=record_type).inc(count)


def observe_kmeans_iterations(iterations: int) -> None:
    KMEANS_ITERATIONS.observe(iterations)


def observe_coverage(percentage: float) -> None:
    COVERAGE_PERCENTAGE.observe(percentage)


# ============================================================
# Metrics Endpoint
# ============================================================


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )
