"""
Geo Analysis API Endpoints.

Synchronous request/response wrappers around the geo analysis engine.
Each call runs in a worker thread with a deadline; if the client goes
away the run is cancelled at its next checkpoint.
"""

import asyncio
import logging

from fastapi import APIRouter, Request, status

from geo_analysis.core.config import settings
from geo_analysis.core.exceptions import ErrorResponse
from geo_analysis.core.rate_limit import RateLimits, limiter
from geo_analysis.core.sentry import set_analysis_context
from geo_analysis.schemas.geo_analysis import (
    ClusteringResponse,
    CoverageResponse,
    ForecastRequest,
    ForecastResponse,
    GeoAnalysisRequest,
    GeoAnalysisResponse,
)
from geo_analysis.services.geo.cancellation import CancellationToken
from geo_analysis.services.geo.orchestrator import (
    perform_clustering,
    perform_coverage_analysis,
    perform_forecasting,
    perform_full_geo_analysis,
    run_in_executor,
    validate_options,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/geo-analysis", tags=["Geo Analysis"])

ERROR_RESPONSES = {
    400: {"description": "Invalid analysis options", "model": ErrorResponse},
    408: {"description": "Analysis cancelled or deadline exceeded", "model": ErrorResponse},
    422: {"description": "Request validation error"},
    429: {"description": "Rate limit exceeded", "model": ErrorResponse},
}


async def _run_with_deadline(func, *args, **kwargs):
    """Run an engine entry point off the event loop under a deadline token."""
    token = CancellationToken.with_timeout(settings.GEO_ANALYSIS_TIMEOUT_SECONDS)
    try:
        return await run_in_executor(func, *args, token=token, **kwargs)
    except asyncio.CancelledError:
        token.cancel()
        raise


@router.post(
    "/analyze",
    response_model=GeoAnalysisResponse,
    status_code=status.HTTP_200_OK,
    summary="Full geo analysis",
    description="""
    Runs clustering, regional forecasting and coverage analysis over one
    input snapshot.

    - Customers without usable coordinates are excluded and counted in `dataQuality`
    - `clusterCount` is clamped to the configured maximum and to the number of distinct locations
    - Clustering/forecasting and coverage run concurrently
    """,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RateLimits.ANALYZE)
async def analyze(request: Request, payload: GeoAnalysisRequest) -> GeoAnalysisResponse:
    options = payload.options.to_domain()
    logger.info(
        f"Geo analysis request: {len(payload.customers)} customers, "
        f"{len(payload.service_points)} service points"
    )
    set_analysis_context("full", customers=len(payload.customers))

    result = await _run_with_deadline(
        perform_full_geo_analysis,
        payload.domain_customers(),
        payload.domain_service_points(),
        options,
        territory=payload.territory,
    )

    logger.info(
        f"Geo analysis completed: {len(result.clusters)} clusters, "
        f"{len(result.forecasts)} regions, coverage={result.coverage.coverage_percentage}%"
    )
    return GeoAnalysisResponse.model_validate(result, from_attributes=True)


@router.post(
    "/coverage",
    response_model=CoverageResponse,
    status_code=status.HTTP_200_OK,
    summary="Coverage-only analysis",
    description="Re-runs coverage analysis alone, e.g. when only the coverage radius changed.",
    responses=ERROR_RESPONSES,
)
@limiter.limit(RateLimits.COVERAGE)
async def analyze_coverage(request: Request, payload: GeoAnalysisRequest) -> CoverageResponse:
    options = validate_options(payload.options.to_domain())
    set_analysis_context("coverage", customers=len(payload.customers))

    coverage_result, quality = await _run_with_deadline(
        perform_coverage_analysis,
        payload.domain_customers(),
        payload.domain_service_points(),
        options,
        territory=payload.territory,
    )
    return CoverageResponse.model_validate(
        {
            "coverage": coverage_result,
            "data_quality": quality,
            "options": options,
        },
        from_attributes=True,
    )


@router.post(
    "/clusters",
    response_model=ClusteringResponse,
    status_code=status.HTTP_200_OK,
    summary="Clustering only",
    responses=ERROR_RESPONSES,
)
@limiter.limit(RateLimits.ANALYZE)
async def analyze_clusters(request: Request, payload: GeoAnalysisRequest) -> ClusteringResponse:
    options = validate_options(payload.options.to_domain())
    set_analysis_context("clustering", customers=len(payload.customers))

    clustering, quality = await _run_with_deadline(
        perform_clustering,
        payload.domain_customers(),
        options,
        territory=payload.territory,
    )
    return ClusteringResponse.model_validate(
        {
            "clusters": clustering.clusters,
            "cluster_metrics": clustering.metrics,
            "assignments": clustering.assignments,
            "data_quality": quality,
            "options": options,
        },
        from_attributes=True,
    )


@router.post(
    "/forecasts",
    response_model=ForecastResponse,
    status_code=status.HTTP_200_OK,
    summary="Regional forecasts and expansion suggestions",
    responses=ERROR_RESPONSES,
)
@limiter.limit(RateLimits.ANALYZE)
async def analyze_forecasts(request: Request, payload: ForecastRequest) -> ForecastResponse:
    options = validate_options(payload.options.to_domain())
    set_analysis_context("forecasting", customers=len(payload.customers))

    clustering, forecasting, quality = await _run_with_deadline(
        perform_forecasting,
        payload.domain_customers(),
        payload.domain_service_points(),
        options,
        territory=payload.territory,
    )
    return ForecastResponse.model_validate(
        {
            "forecasts": forecasting.forecasts,
            "expansion_suggestions": forecasting.expansion_suggestions,
            "overall_growth": forecasting.overall_growth,
            "as_of": forecasting.as_of,
            "clusters": clustering.clusters,
            "data_quality": quality,
            "options": options,
        },
        from_attributes=True,
    )
