"""
API routes module.
"""

from fastapi import APIRouter

from geo_analysis.api.routes import (
    geo_analysis,
    health,
)

# Main API router (mounted at /api/v1)
api_router = APIRouter()

# Include health check
api_router.include_router(health.router)

# Include geo analysis endpoints
api_router.include_router(geo_analysis.router)
