"""
Regional growth forecasting and expansion ranking.

Regions are the clusters produced by the clustering engine (one region per
cluster) or, when a grid partition is requested, H3 cells. For each region
a straight line is fitted to monthly acquisition counts over a lookback
window and extrapolated over the forecast horizon.

The reference date is always derived from the data (or given explicitly),
never from the wall clock, so re-runs are reproducible.
"""
import calendar
import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

import h3
import numpy as np

from geo_analysis.core.config import settings
from geo_analysis.core.metrics import track_analysis_execution
from geo_analysis.services.geo.cancellation import CancellationToken, check_cancelled
from geo_analysis.services.geo.geometry import (
    bounding_circle_radius,
    coordinates_array,
    eligible,
    nearest_distances_km,
)
from geo_analysis.services.geo.models import (
    CustomerLocation,
    ExpansionSuggestion,
    ForecastingResult,
    GeoCluster,
    RegionalForecast,
    RegionPartition,
    SalesForecast,
    ServicePoint,
    Trend,
)

logger = logging.getLogger(__name__)


RECOMMENDED_ACTIONS = {
    Trend.SURGE: [
        "Open an additional service point to absorb demand",
        "Increase field visit frequency in this region",
        "Prioritise this region in the next budget cycle",
    ],
    Trend.GROWING: [
        "Expand banking unit capacity ahead of demand",
        "Run local customer acquisition campaigns",
    ],
    Trend.STABLE: [
        "Focus on retention and cross-selling to existing customers",
        "Review service quality at nearby branches",
    ],
    Trend.DECLINING: [
        "Investigate the causes of customer churn",
        "Consider consolidating underused service points",
        "Launch win-back offers for inactive customers",
    ],
}

REACTIVATION_ACTION = "Reactivate dormant customers before adding capacity"


@dataclass
class Region:
    """Group of customers forecast together."""

    id: str
    name: str
    center: tuple[float, float]
    radius: float
    customers: list[CustomerLocation]


@dataclass
class GrowthProjection:
    growth_rate: float
    predicted_customers: int
    confidence_interval: tuple[float, float]


# ============================================================
# Regions
# ============================================================


def _region_name(customers: Sequence[CustomerLocation], index: int) -> str:
    types = Counter(c.business_type for c in customers if c.business_type and c.business_type != "unknown")
    label = types.most_common(1)[0][0] if types else "General"
    return f"{label} region #{index + 1}"


def regions_from_clusters(clusters: Sequence[GeoCluster]) -> list[Region]:
    return [
        Region(
            id=c.id,
            name=_region_name(c.customers, i),
            center=c.centroid,
            radius=c.radius,
            customers=list(c.customers),
        )
        for i, c in enumerate(clusters)
    ]


def regions_from_grid(customers: Sequence[CustomerLocation], resolution: int) -> list[Region]:
    """One region per occupied H3 cell, in order of first appearance."""
    cells: dict[str, list[CustomerLocation]] = {}
    for c in eligible(customers):
        cells.setdefault(h3.latlng_to_cell(c.latitude, c.longitude, resolution), []).append(c)

    regions = []
    for i, (cell, members) in enumerate(cells.items()):
        center = h3.cell_to_latlng(cell)
        regions.append(
            Region(
                id=cell,
                name=_region_name(members, i),
                center=(float(center[0]), float(center[1])),
                radius=bounding_circle_radius(center, [c.point for c in members]),
                customers=members,
            )
        )
    return regions


# ============================================================
# Growth model
# ============================================================


def month_index(d: date) -> int:
    return d.year * 12 + d.month - 1


def _created_date(customer: CustomerLocation) -> Optional[date]:
    return customer.created_at.date() if customer.created_at is not None else None


def resolve_as_of(customers: Sequence[CustomerLocation], as_of: Optional[date] = None) -> Optional[date]:
    """Explicit reference date, else the latest creation date in the data."""
    if as_of is not None:
        return as_of
    dates = [d for d in (_created_date(c) for c in customers) if d is not None]
    return max(dates) if dates else None


def monthly_acquisitions(
    customers: Sequence[CustomerLocation],
    as_of: date,
    lookback_months: int,
) -> np.ndarray:
    """Customers created per month over the lookback window ending at as_of's month."""
    end = month_index(as_of)
    start = end - lookback_months + 1
    counts = np.zeros(lookback_months, dtype=float)
    for c in customers:
        d = _created_date(c)
        if d is None or d > as_of:
            continue
        m = month_index(d)
        if start <= m <= end:
            counts[m - start] += 1
    return counts


def project_growth(
    current: int,
    counts: np.ndarray,
    horizon_months: int,
) -> GrowthProjection:
    """
    Fit an OLS line to monthly acquisitions and extrapolate it.

    growth_rate is the projected net change over the horizon relative to
    the current customer count. A negative slope can extrapolate below
    zero, which yields a declining trend. Insufficient history gives 0%.
    """
    in_window = int(counts.sum())
    active_months = int(np.count_nonzero(counts))
    if current <= 0 or in_window < settings.GEO_FORECAST_MIN_HISTORY or active_months < 2:
        return GrowthProjection(
            growth_rate=0.0,
            predicted_customers=max(0, current),
            confidence_interval=(float(max(0, current)), float(max(0, current))),
        )

    months = len(counts)
    x = np.arange(months, dtype=float)
    slope, intercept = np.polyfit(x, counts, 1)

    future = np.arange(months, months + horizon_months, dtype=float)
    projected = float((intercept + slope * future).sum())

    growth_rate = round(projected / current * 100, 1)
    if growth_rate == 0:
        growth_rate = 0.0
    predicted = predict_customers(current, growth_rate)

    residuals = counts - (intercept + slope * x)
    dof = max(months - 2, 1)
    stderr = math.sqrt(float((residuals ** 2).sum()) / dof)
    margin = 1.96 * stderr * math.sqrt(horizon_months)

    return GrowthProjection(
        growth_rate=growth_rate,
        predicted_customers=predicted,
        confidence_interval=(round(max(0.0, predicted - margin), 1), round(predicted + margin, 1)),
    )


def predict_customers(current: int, growth_rate: float) -> int:
    return max(0, int(round(current * (1 + growth_rate / 100))))


def classify_trend(growth_rate: float) -> Trend:
    if growth_rate > settings.GEO_TREND_SURGE_THRESHOLD:
        return Trend.SURGE
    if growth_rate > settings.GEO_TREND_GROWING_THRESHOLD:
        return Trend.GROWING
    if growth_rate < settings.GEO_TREND_DECLINING_THRESHOLD:
        return Trend.DECLINING
    return Trend.STABLE


def best_months(
    region_customers: Sequence[CustomerLocation],
    population: Sequence[CustomerLocation],
    as_of: Optional[date],
    count: Optional[int] = None,
) -> list[str]:
    """
    Top month-of-year labels by acquisition count.

    Falls back to population-wide counts when the region has too little
    dated history. Ties resolve in calendar order.
    """
    count = count or settings.GEO_BEST_MONTHS_COUNT

    def months_of(customers):
        dates = (_created_date(c) for c in customers)
        return [d.month for d in dates if d is not None and (as_of is None or d <= as_of)]

    months = months_of(region_customers)
    if len(months) < settings.GEO_SEASONAL_MIN_HISTORY:
        months = months_of(population)

    tally = Counter(months)
    ranked = sorted(range(1, 13), key=lambda m: (-tally.get(m, 0), m))
    return [calendar.month_name[m] for m in ranked[:count]]


# ============================================================
# Expansion score
# ============================================================


def revenue_density(region: Region) -> float:
    total = sum(c.monthly_profit for c in region.customers)
    area = math.pi * max(region.radius, settings.GEO_MIN_DENSITY_RADIUS_KM) ** 2
    return total / area


def coverage_gap(
    customers: Sequence[CustomerLocation],
    service_points: Optional[Sequence[ServicePoint]],
    radius_km: float,
) -> float:
    """
    Share of customers farther than radius_km from every service point.

    0.0 when no service points were supplied at all (unknown gap), 1.0
    for an explicitly empty list.
    """
    if service_points is None or not customers:
        return 0.0
    points = eligible(service_points)
    distances = nearest_distances_km(coordinates_array(customers), coordinates_array(points))
    return float((distances > radius_km).mean())


def active_share(customers: Sequence[CustomerLocation]) -> float:
    """Share of customers whose status is "active"; 0.0 for an empty region."""
    if not customers:
        return 0.0
    return sum(1 for c in customers if c.status == "active") / len(customers)


def recommended_actions(trend: Trend, share_active: float) -> list[str]:
    actions = list(RECOMMENDED_ACTIONS[trend])
    if share_active < settings.GEO_LOW_ACTIVE_SHARE:
        actions.append(REACTIVATION_ACTION)
    return actions


def expansion_score(growth_rate: float, density_ratio: float, gap: float) -> tuple[int, dict[str, float]]:
    """
    Weighted 0-100 composite, monotonic in each input.

    Returns the score and the weighted contribution of each signal.
    """
    cap = settings.GEO_EXPANSION_GROWTH_CAP
    g = min(max(growth_rate, 0.0), cap) / cap
    d = min(max(density_ratio, 0.0), 1.0)
    c = min(max(gap, 0.0), 1.0)

    contributions = {
        "growth": settings.GEO_EXPANSION_WEIGHT_GROWTH * g * 100,
        "density": settings.GEO_EXPANSION_WEIGHT_DENSITY * d * 100,
        "coverage": settings.GEO_EXPANSION_WEIGHT_COVERAGE * c * 100,
    }
    score = int(round(sum(contributions.values())))
    return max(0, min(100, score)), {k: round(v, 2) for k, v in contributions.items()}


def _reasons(
    forecast: RegionalForecast,
    density: float,
    density_ratio: float,
    radius_km: float,
    horizon_months: int,
) -> list[str]:
    texts = {
        "growth": (
            f"Projected customer growth of {forecast.growth_rate:+.1f}% "
            f"over the next {horizon_months} months"
        ),
        "density": (
            f"Revenue density of {density:,.0f} per km² "
            f"({density_ratio:.0%} of the strongest region)"
        ),
        "coverage": (
            f"{forecast.coverage_gap:.0%} of customers are outside "
            f"the {radius_km:g} km service radius"
        ),
    }
    signals = ["growth", "density", "coverage"]
    ordered = sorted(signals, key=lambda s: (-forecast.score_breakdown.get(s, 0.0), signals.index(s)))
    # activity is context only, it carries no weight in the score
    activity = f"{forecast.active_share:.0%} of customers in the region are active"
    return [texts[s] for s in ordered] + [activity]


def _sales_forecast(region: Region, predicted: int) -> SalesForecast:
    current_monthly = float(sum(c.monthly_profit for c in region.customers))
    per_customer = current_monthly / len(region.customers) if region.customers else 0.0
    predicted_monthly = predicted * per_customer
    change = (predicted_monthly - current_monthly) / current_monthly * 100 if current_monthly else 0.0
    return SalesForecast(
        current_monthly=round(current_monthly, 2),
        predicted_monthly=round(predicted_monthly, 2),
        change_percent=round(change, 1),
    )


# ============================================================
# Public API
# ============================================================


def forecast_regions(
    customers: Sequence[CustomerLocation],
    clusters: Sequence[GeoCluster],
    service_points: Optional[Sequence[ServicePoint]] = None,
    coverage_radius_km: Optional[float] = None,
    partition: RegionPartition = RegionPartition.CLUSTER,
    grid_resolution: Optional[int] = None,
    horizon_months: Optional[int] = None,
    as_of: Optional[date] = None,
    max_suggestions: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> ForecastingResult:
    """
    Forecast growth per region and rank regions for expansion.

    Args:
        customers: the full eligible population (seasonal fallback, as_of)
        clusters: clustering output; one region per cluster
        service_points: existing sites used for the coverage-gap signal
        coverage_radius_km: service radius for the coverage-gap signal
        partition: cluster (default) or H3 grid regions
        grid_resolution: H3 resolution for grid regions
        horizon_months: forecast horizon
        as_of: reference date; defaults to the latest creation date
        max_suggestions: number of expansion suggestions to return
        token: optional cancellation token polled per region
    """
    radius_km = settings.GEO_DEFAULT_COVERAGE_RADIUS_KM if coverage_radius_km is None else coverage_radius_km
    horizon = horizon_months or settings.GEO_FORECAST_HORIZON_MONTHS
    resolution = settings.GEO_DEFAULT_GRID_RESOLUTION if grid_resolution is None else grid_resolution
    top_n = settings.GEO_MAX_EXPANSION_SUGGESTIONS if max_suggestions is None else max_suggestions

    population = eligible(customers)
    if partition == RegionPartition.GRID:
        regions = regions_from_grid(population, resolution)
    else:
        regions = regions_from_clusters(clusters)

    reference = resolve_as_of(population, as_of)
    if not regions:
        return ForecastingResult(forecasts=[], expansion_suggestions=[], overall_growth=0.0, as_of=reference)

    with track_analysis_execution("forecasting", len(population)):
        densities = [revenue_density(r) for r in regions]
        max_density = max(densities)

        forecasts = []
        for region, density in zip(regions, densities):
            check_cancelled(token, "forecasting")

            current = len(region.customers)
            if reference is not None:
                counts = monthly_acquisitions(region.customers, reference, settings.GEO_FORECAST_LOOKBACK_MONTHS)
            else:
                counts = np.zeros(settings.GEO_FORECAST_LOOKBACK_MONTHS)
            projection = project_growth(current, counts, horizon)

            density_ratio = density / max_density if max_density > 0 else 0.0
            gap = coverage_gap(region.customers, service_points, radius_km)
            score, breakdown = expansion_score(projection.growth_rate, density_ratio, gap)
            trend = classify_trend(projection.growth_rate)
            share_active = active_share(region.customers)

            forecasts.append(
                RegionalForecast(
                    region_id=region.id,
                    region_name=region.name,
                    center=region.center,
                    current_customers=current,
                    predicted_customers=projection.predicted_customers,
                    growth_rate=projection.growth_rate,
                    trend=trend,
                    expansion_score=score,
                    best_months_for_expansion=best_months(region.customers, population, reference),
                    confidence_interval=projection.confidence_interval,
                    recommended_actions=recommended_actions(trend, share_active),
                    sales_forecast=_sales_forecast(region, projection.predicted_customers),
                    coverage_gap=round(gap, 4),
                    score_breakdown=breakdown,
                    active_share=round(share_active, 4),
                )
            )

        ranked = sorted(range(len(forecasts)), key=lambda i: (-forecasts[i].expansion_score, i))
        suggestions = [
            ExpansionSuggestion(
                region_id=forecasts[i].region_id,
                area=forecasts[i].region_name,
                coordinates=forecasts[i].center,
                score=forecasts[i].expansion_score,
                trend=forecasts[i].trend,
                reasons=_reasons(
                    forecasts[i],
                    densities[i],
                    densities[i] / max_density if max_density > 0 else 0.0,
                    radius_km,
                    horizon,
                ),
            )
            for i in ranked[:top_n]
        ]

    overall_growth = round(float(np.mean([f.growth_rate for f in forecasts])), 1)
    logger.debug(f"Forecast {len(forecasts)} regions, overall growth {overall_growth}%")

    return ForecastingResult(
        forecasts=forecasts,
        expansion_suggestions=suggestions,
        overall_growth=overall_growth,
        as_of=reference,
    )


def forecast(
    customers: Sequence[CustomerLocation],
    clusters: Sequence[GeoCluster],
    **kwargs,
) -> list[RegionalForecast]:
    """Regional forecasts only; see forecast_regions."""
    return forecast_regions(customers, clusters, **kwargs).forecasts
