"""
Pydantic schemas for API request/response models.
"""

from geo_analysis.schemas.geo_analysis import (
    AnalysisOptionsIn,
    ClusteringResponse,
    CoverageResponse,
    CustomerLocationIn,
    ForecastRequest,
    ForecastResponse,
    GeoAnalysisRequest,
    GeoAnalysisResponse,
    ServicePointIn,
)

__all__ = [
    "AnalysisOptionsIn",
    "ClusteringResponse",
    "CoverageResponse",
    "CustomerLocationIn",
    "ForecastRequest",
    "ForecastResponse",
    "GeoAnalysisRequest",
    "GeoAnalysisResponse",
    "ServicePointIn",
]
