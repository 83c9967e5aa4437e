"""
Health check endpoints.
"""
import h3
import numpy as np
from fastapi import APIRouter, Request

from geo_analysis.core.config import settings
from geo_analysis.core.rate_limit import RateLimits, limiter
from geo_analysis.services.geo.geometry import haversine_distance_km

router = APIRouter(tags=["health"])


@router.get("/health")
@limiter.limit(RateLimits.HEALTH)
async def health_check(request: Request) -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/detailed")
@limiter.limit(RateLimits.HEALTH)
async def detailed_health_check(request: Request) -> dict:
    """Detailed health check including the numeric stack and configuration."""
    checks = {
        "api": "healthy",
        "geometry": "unknown",
        "h3": "unknown",
        "configuration": "unknown",
    }

    # One degree of latitude is ~111 km everywhere
    try:
        distance = haversine_distance_km((0.0, 0.0), (1.0, 0.0))
        checks["geometry"] = "healthy" if abs(distance - 111.19) < 0.1 else "unhealthy"
    except Exception as e:
        checks["geometry"] = f"unhealthy: {str(e)}"

    try:
        cell = h3.latlng_to_cell(38.08, 46.29, settings.GEO_DEFAULT_GRID_RESOLUTION)
        checks["h3"] = "healthy" if h3.is_valid_cell(cell) else "unhealthy"
    except Exception as e:
        checks["h3"] = f"unhealthy: {str(e)}"

    try:
        settings.validate_production_settings()
        checks["configuration"] = "healthy"
    except ValueError as e:
        checks["configuration"] = f"unhealthy: {str(e)}"

    overall = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall,
        "checks": checks,
        "versions": {
            "app": settings.APP_VERSION,
            "numpy": np.__version__,
            "h3": h3.__version__,
        },
    }
