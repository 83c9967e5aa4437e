"""
Geo analysis orchestrator.

Runs clustering -> forecasting and coverage over one immutable snapshot.
The two branches only read the snapshot and write disjoint results, so
they run side by side on a small thread pool and are joined at the end.
"""
import asyncio
import contextvars
import math
import uuid
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import replace
from functools import partial
from typing import Iterable, Optional, Sequence

from geo_analysis.core.config import settings
from geo_analysis.core.exceptions import InvalidAnalysisOptionsException
from geo_analysis.core.logging import analysis_id_var, get_logger
from geo_analysis.core.metrics import track_analysis_execution
from geo_analysis.services.geo.cancellation import CancellationToken, check_cancelled
from geo_analysis.services.geo.clustering import cluster_customers
from geo_analysis.services.geo.coverage import coverage
from geo_analysis.services.geo.forecasting import forecast_regions
from geo_analysis.services.geo.models import (
    AnalysisOptions,
    ClusteringResult,
    DataQualityReport,
    ForecastingResult,
    GeoAnalysisResult,
    RegionPartition,
    ServiceCoverageResult,
)
from geo_analysis.services.geo.snapshot import (
    AnalysisSnapshot,
    CustomerInput,
    ServicePointInput,
    build_snapshot,
    restrict_to_territory,
)

logger = get_logger(__name__)


# ============================================================
# Options
# ============================================================


def _as_int(option: str, value) -> int:
    if isinstance(value, bool):
        raise InvalidAnalysisOptionsException(option, value, "must be an integer")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidAnalysisOptionsException(option, value, "must be an integer")
    if not math.isfinite(number) or number != int(number):
        raise InvalidAnalysisOptionsException(option, value, "must be an integer")
    return int(number)


def _as_float(option: str, value) -> float:
    if isinstance(value, bool):
        raise InvalidAnalysisOptionsException(option, value, "must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidAnalysisOptionsException(option, value, "must be a number")
    if not math.isfinite(number):
        raise InvalidAnalysisOptionsException(option, value, "must be a finite number")
    return number


def _clamp(value, low, high):
    return max(low, min(high, value))


def validate_options(options: Optional[AnalysisOptions] = None) -> AnalysisOptions:
    """
    Reject unusable options and clamp the rest into range.

    Raises:
        InvalidAnalysisOptionsException: cluster_count < 1, negative or
            non-finite coverage radius, non-numeric values, unknown region
            partition
    """
    options = options or AnalysisOptions()

    cluster_count = _as_int("cluster_count", options.cluster_count)
    if cluster_count < 1:
        raise InvalidAnalysisOptionsException("cluster_count", options.cluster_count, "must be at least 1")

    radius = _as_float("coverage_radius_km", options.coverage_radius_km)
    if radius < 0:
        raise InvalidAnalysisOptionsException("coverage_radius_km", options.coverage_radius_km, "must not be negative")

    resolution = _as_int("grid_resolution", options.grid_resolution)
    horizon = _as_int("forecast_horizon_months", options.forecast_horizon_months)
    max_locations = _as_int("max_optimal_locations", options.max_optimal_locations)
    max_suggestions = _as_int("max_expansion_suggestions", options.max_expansion_suggestions)
    if max_locations < 0:
        raise InvalidAnalysisOptionsException("max_optimal_locations", max_locations, "must not be negative")
    if max_suggestions < 0:
        raise InvalidAnalysisOptionsException("max_expansion_suggestions", max_suggestions, "must not be negative")

    try:
        partition = RegionPartition(options.region_partition)
    except ValueError:
        raise InvalidAnalysisOptionsException(
            "region_partition", options.region_partition, "must be 'cluster' or 'grid'"
        )

    return replace(
        options,
        cluster_count=min(cluster_count, settings.GEO_MAX_CLUSTERS),
        coverage_radius_km=min(radius, settings.GEO_MAX_COVERAGE_RADIUS_KM),
        grid_resolution=_clamp(resolution, settings.GEO_MIN_GRID_RESOLUTION, settings.GEO_MAX_GRID_RESOLUTION),
        region_partition=partition,
        forecast_horizon_months=_clamp(horizon, 1, settings.GEO_FORECAST_MAX_HORIZON_MONTHS),
        max_optimal_locations=max_locations,
        max_expansion_suggestions=max_suggestions,
    )


def data_quality(snapshot: AnalysisSnapshot) -> DataQualityReport:
    return DataQualityReport(
        total_customers=snapshot.total_customers,
        eligible_customers=len(snapshot.customers),
        excluded_customers=snapshot.excluded_customers,
        outside_territory=snapshot.outside_territory,
        total_service_points=snapshot.total_service_points,
        eligible_service_points=len(snapshot.service_points),
        excluded_service_points=snapshot.excluded_service_points,
    )


# ============================================================
# Branches
# ============================================================


def _cluster_and_forecast(
    snapshot: AnalysisSnapshot,
    options: AnalysisOptions,
    token: Optional[CancellationToken],
    with_service_points: bool = True,
) -> tuple[ClusteringResult, ForecastingResult]:
    clustering = cluster_customers(
        snapshot.customers,
        options.cluster_count,
        grid_resolution=options.grid_resolution,
        token=token,
    )
    check_cancelled(token, "forecasting")
    forecasting = forecast_regions(
        snapshot.customers,
        clustering.clusters,
        service_points=snapshot.service_points if with_service_points else None,
        coverage_radius_km=options.coverage_radius_km,
        partition=options.region_partition,
        grid_resolution=options.grid_resolution,
        horizon_months=options.forecast_horizon_months,
        as_of=options.as_of,
        max_suggestions=options.max_expansion_suggestions,
        token=token,
    )
    return clustering, forecasting


def _coverage(
    snapshot: AnalysisSnapshot,
    options: AnalysisOptions,
    token: Optional[CancellationToken],
) -> ServiceCoverageResult:
    return coverage(
        snapshot.customers,
        snapshot.service_points,
        options.coverage_radius_km,
        max_optimal_locations=options.max_optimal_locations,
        token=token,
    )


def _run_branches(
    snapshot: AnalysisSnapshot,
    options: AnalysisOptions,
    token: Optional[CancellationToken],
) -> tuple[ClusteringResult, ForecastingResult, ServiceCoverageResult]:
    if not settings.GEO_PARALLEL_SUBANALYSES:
        clustering, forecasting = _cluster_and_forecast(snapshot, options, token)
        return clustering, forecasting, _coverage(snapshot, options, token)

    # a failure in one branch stops the other at its next checkpoint
    branch_token = token.child() if token is not None else CancellationToken()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="geo-analysis") as pool:
        main_future = pool.submit(
            contextvars.copy_context().run, _cluster_and_forecast, snapshot, options, branch_token
        )
        coverage_future = pool.submit(
            contextvars.copy_context().run, _coverage, snapshot, options, branch_token
        )
        try:
            done, _ = wait([main_future, coverage_future], return_when=FIRST_EXCEPTION)
            failed = [f for f in (main_future, coverage_future) if f in done and f.exception() is not None]
            if failed:
                branch_token.cancel()
                raise failed[0].exception()
            clustering, forecasting = main_future.result()
            coverage_result = coverage_future.result()
        except BaseException:
            branch_token.cancel()
            raise

    return clustering, forecasting, coverage_result


def region_recommendations(forecasting: ForecastingResult) -> list[str]:
    """Alerts for regions where a large share of customers is unserved."""
    threshold = settings.GEO_REGION_GAP_ALERT_SHARE
    return [
        f"{f.coverage_gap:.0%} of customers in {f.region_name} are unserved"
        for f in forecasting.forecasts
        if f.coverage_gap >= threshold
    ]


# ============================================================
# Public API
# ============================================================


def perform_full_geo_analysis(
    customers: Iterable[CustomerInput],
    service_points: Iterable[ServicePointInput],
    options: Optional[AnalysisOptions] = None,
    territory: Optional[Sequence[Sequence[float]]] = None,
    token: Optional[CancellationToken] = None,
) -> GeoAnalysisResult:
    """
    Run clustering, forecasting and coverage over one input snapshot.

    Args:
        customers: CustomerLocation records or raw mappings
        service_points: ServicePoint records or raw mappings
        options: analysis options; validated and clamped before any work
        territory: optional (lng, lat) ring restricting the customers
        token: optional cancellation token

    Raises:
        InvalidAnalysisOptionsException: options rejected
        AnalysisCancelledException: token cancelled or deadline passed
    """
    options = validate_options(options)
    check_cancelled(token, "snapshot")

    snapshot = restrict_to_territory(build_snapshot(customers, service_points), territory)
    analysis_id = str(uuid.uuid4())
    ctx = analysis_id_var.set(analysis_id)
    try:
        logger.info(
            "Geo analysis started",
            extra={
                "customers": len(snapshot.customers),
                "service_points": len(snapshot.service_points),
                "cluster_count": options.cluster_count,
                "coverage_radius_km": options.coverage_radius_km,
                "region_partition": options.region_partition.value,
            },
        )

        with track_analysis_execution("full", len(snapshot.customers)):
            clustering, forecasting, coverage_result = _run_branches(snapshot, options, token)

        coverage_result.recommendations.extend(region_recommendations(forecasting))

        logger.info(
            "Geo analysis completed",
            extra={
                "clusters": len(clustering.clusters),
                "regions": len(forecasting.forecasts),
                "coverage_percentage": coverage_result.coverage_percentage,
            },
        )
    finally:
        analysis_id_var.reset(ctx)

    return GeoAnalysisResult(
        clusters=clustering.clusters,
        cluster_metrics=clustering.metrics,
        forecasts=forecasting.forecasts,
        expansion_suggestions=forecasting.expansion_suggestions,
        coverage=coverage_result,
        data_quality=data_quality(snapshot),
        options=options,
    )


def perform_coverage_analysis(
    customers: Iterable[CustomerInput],
    service_points: Iterable[ServicePointInput],
    options: Optional[AnalysisOptions] = None,
    territory: Optional[Sequence[Sequence[float]]] = None,
    token: Optional[CancellationToken] = None,
) -> tuple[ServiceCoverageResult, DataQualityReport]:
    """Coverage-only re-run, used when only the radius changed."""
    options = validate_options(options)
    snapshot = restrict_to_territory(build_snapshot(customers, service_points), territory)
    return _coverage(snapshot, options, token), data_quality(snapshot)


def perform_clustering(
    customers: Iterable[CustomerInput],
    options: Optional[AnalysisOptions] = None,
    territory: Optional[Sequence[Sequence[float]]] = None,
    token: Optional[CancellationToken] = None,
) -> tuple[ClusteringResult, DataQualityReport]:
    options = validate_options(options)
    snapshot = restrict_to_territory(build_snapshot(customers, []), territory)
    result = cluster_customers(
        snapshot.customers,
        options.cluster_count,
        grid_resolution=options.grid_resolution,
        token=token,
    )
    return result, data_quality(snapshot)


def perform_forecasting(
    customers: Iterable[CustomerInput],
    service_points: Optional[Iterable[ServicePointInput]] = None,
    options: Optional[AnalysisOptions] = None,
    territory: Optional[Sequence[Sequence[float]]] = None,
    token: Optional[CancellationToken] = None,
) -> tuple[ClusteringResult, ForecastingResult, DataQualityReport]:
    """
    Clustering plus forecasting.

    Without service points the coverage-gap signal is treated as unknown
    (0) rather than as every customer being unserved.
    """
    options = validate_options(options)
    snapshot = restrict_to_territory(build_snapshot(customers, service_points), territory)
    clustering, forecasting = _cluster_and_forecast(
        snapshot, options, token, with_service_points=service_points is not None
    )
    return clustering, forecasting, data_quality(snapshot)


async def run_in_executor(func, *args, **kwargs):
    """Run a blocking analysis entry point without blocking the event loop."""
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    return await loop.run_in_executor(None, ctx.run, partial(func, *args, **kwargs))
