"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geo_analysis.core.config import settings
from geo_analysis.core.rate_limit import setup_rate_limiting
from geo_analysis.core.logging import setup_logging, RequestLoggingMiddleware
from geo_analysis.core.sentry import init_sentry
from geo_analysis.core.metrics import PrometheusMiddleware, metrics_endpoint
from geo_analysis.core.exceptions import ConfigurationException, register_exception_handlers
from geo_analysis.api.routes import api_router

# Setup logging
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=not settings.DEBUG,
)

logger = logging.getLogger(__name__)

# Initialize Sentry (if configured)
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting application...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        raise ConfigurationException(message=str(e))

    logger.info(
        f"Geo engine limits: max clusters {settings.GEO_MAX_CLUSTERS}, "
        f"max radius {settings.GEO_MAX_COVERAGE_RADIUS_KM} km, "
        f"timeout {settings.GEO_ANALYSIS_TIMEOUT_SECONDS}s"
    )
    logger.info("Application started successfully")
    yield
    # Shutdown
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Geospatial clustering, growth forecasting and service coverage analysis",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan,
    )

    # Standardized exception handlers (must be registered first)
    register_exception_handlers(app)

    # Rate limiting
    setup_rate_limiting(app)

    # Prometheus metrics middleware
    if settings.METRICS_ENABLED:
        app.add_middleware(PrometheusMiddleware)

    # Request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Metrics endpoint (outside API prefix)
    if settings.METRICS_ENABLED:
        app.add_api_route(
            settings.METRICS_PATH,
            metrics_endpoint,
            methods=["GET"],
            include_in_schema=False,
        )

    logger.info(f"Application configured: {settings.APP_NAME} v{settings.APP_VERSION}")

    return app


app = create_app()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None,
    }
