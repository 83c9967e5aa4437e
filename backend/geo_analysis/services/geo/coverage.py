"""
Service coverage analysis.

A customer is covered when the haversine distance to the nearest service
point is within the coverage radius. New sites are proposed with a greedy
maximum-coverage heuristic: repeatedly pick the candidate covering the most
still-uncovered customers. This is an approximation of set cover, not an
exact solver.
"""
import logging
from typing import Optional, Sequence

import numpy as np

from geo_analysis.core.config import settings
from geo_analysis.core.metrics import observe_coverage, track_analysis_execution
from geo_analysis.services.geo.cancellation import CancellationToken, check_cancelled
from geo_analysis.services.geo.clustering import effective_cluster_count, run_kmeans
from geo_analysis.services.geo.geometry import (
    COMPASS_DIRECTIONS,
    compass_direction,
    coordinates_array,
    eligible,
    haversine_matrix_km,
    initial_bearing,
)
from geo_analysis.services.geo.models import (
    CoverageGap,
    CustomerLocation,
    OptimalLocation,
    Priority,
    ServiceCoverageResult,
    ServicePoint,
    ServicePointCoverage,
)

logger = logging.getLogger(__name__)


# ============================================================
# Candidate sites
# ============================================================


def _group_means(coords: np.ndarray, keys: Sequence) -> np.ndarray:
    """Mean coordinate per key, in order of first appearance."""
    groups: dict = {}
    for i, key in enumerate(keys):
        groups.setdefault(key, []).append(i)
    return np.asarray([coords[idx].mean(axis=0) for idx in groups.values()], dtype=float)


def candidate_sites(coords: np.ndarray, token: Optional[CancellationToken] = None) -> np.ndarray:
    """
    Candidate locations for a new service point.

    K-means centroids of the uncovered set when it is large enough,
    otherwise centroids of a coarse lat/lng grid.
    """
    if len(coords) >= settings.GEO_CANDIDATE_MIN_FOR_CLUSTERING:
        k = effective_cluster_count(
            settings.GEO_CANDIDATE_CLUSTERS,
            coords,
            max_clusters=settings.GEO_CANDIDATE_CLUSTERS,
        )
        run = run_kmeans(coords, k, token=token)
        return _group_means(coords, run.labels.tolist())

    step = settings.GEO_CANDIDATE_GRID_DEGREES
    cells = [(int(np.floor(lat / step)), int(np.floor(lng / step))) for lat, lng in coords]
    return _group_means(coords, cells)


def _priority(share: float) -> Priority:
    if share >= settings.GEO_PRIORITY_HIGH_SHARE:
        return Priority.HIGH
    if share >= settings.GEO_PRIORITY_MEDIUM_SHARE:
        return Priority.MEDIUM
    return Priority.LOW


def find_optimal_locations(
    uncovered: Sequence[CustomerLocation],
    radius_km: float,
    max_locations: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> list[OptimalLocation]:
    """
    Greedy maximum coverage over the uncovered customers.

    Each round picks the candidate covering the most remaining customers
    (first candidate wins ties) and removes them from the pool. If no
    candidate covers anyone, the first remaining customer's own location
    is used, so every round makes progress.
    """
    max_locations = settings.GEO_MAX_OPTIMAL_LOCATIONS if max_locations is None else max_locations
    remaining = list(uncovered)
    locations = []

    while remaining and len(locations) < max_locations:
        check_cancelled(token, "coverage")

        remaining_coords = coordinates_array(remaining)
        candidates = candidate_sites(remaining_coords, token)
        within = haversine_matrix_km(candidates, remaining_coords) <= radius_km
        potentials = within.sum(axis=1)

        best = int(potentials.argmax())
        if potentials[best] > 0:
            site = candidates[best]
            covered = within[best]
        else:
            site = remaining_coords[0]
            covered = haversine_matrix_km(site[None, :], remaining_coords)[0] <= radius_km

        count = int(covered.sum())
        revenue = float(sum(c.monthly_profit for c, hit in zip(remaining, covered) if hit))
        locations.append(
            OptimalLocation(
                latitude=round(float(site[0]), 6),
                longitude=round(float(site[1]), 6),
                potential_coverage=count,
                priority=_priority(count / len(remaining)),
                reason=f"Covers {count} unserved customers with {revenue:,.0f} combined monthly profit",
                estimated_monthly_revenue=round(revenue, 2),
            )
        )
        remaining = [c for c, hit in zip(remaining, covered) if not hit]

    return locations


# ============================================================
# Per service point
# ============================================================


def direction_gaps(
    service_point: ServicePoint,
    outside: Sequence[CustomerLocation],
    distances: np.ndarray,
) -> list[CoverageGap]:
    """
    Customers outside a service point's radius grouped by compass direction.

    Returns the most populated directions first (compass order on ties).
    """
    buckets: dict[str, list[float]] = {d: [] for d in COMPASS_DIRECTIONS}
    for customer, distance in zip(outside, distances):
        bearing = initial_bearing(service_point.point, customer.point)
        buckets[compass_direction(bearing)].append(float(distance))

    gaps = [
        CoverageGap(
            direction=direction,
            distance=round(float(np.mean(values)), 2),
            potential_customers=len(values),
        )
        for direction, values in buckets.items()
        if values
    ]
    gaps.sort(key=lambda g: -g.potential_customers)
    return gaps[: settings.GEO_MAX_DIRECTION_GAPS]


def analyze_service_point(
    service_point: ServicePoint,
    customers: Sequence[CustomerLocation],
    distances: np.ndarray,
    radius_km: float,
) -> ServicePointCoverage:
    """Radius analysis of one service point given its distance column."""
    inside = distances <= radius_km
    in_radius = [c for c, hit in zip(customers, inside) if hit]
    outside = [c for c, hit in zip(customers, inside) if not hit]

    return ServicePointCoverage(
        service_point_id=service_point.id,
        name=service_point.name,
        type=service_point.type,
        customers_in_radius=len(in_radius),
        total_covered_revenue=round(float(sum(c.monthly_profit for c in in_radius)), 2),
        coverage_percentage=round(len(in_radius) / len(customers) * 100, 1) if customers else 0.0,
        gaps=direction_gaps(service_point, outside, distances[~inside]),
    )


# ============================================================
# Recommendations
# ============================================================


def build_recommendations(
    eligible_count: int,
    has_service_points: bool,
    coverage_percentage: float,
    avg_distance: float,
    uncovered_count: int,
    radius_km: float,
    optimal_locations: Sequence[OptimalLocation],
) -> list[str]:
    if eligible_count == 0:
        return ["No customers with valid coordinates were available for coverage analysis"]

    recommendations = []
    if not has_service_points:
        recommendations.append("No service points were provided; every customer is currently unserved")

    if coverage_percentage < 50:
        recommendations.append(
            f"Coverage is critically low at {coverage_percentage:.1f}%; opening new service points is urgent"
        )
    elif coverage_percentage < 70:
        recommendations.append(
            f"Coverage of {coverage_percentage:.1f}% is moderate; consider new sites in under-served areas"
        )
    elif coverage_percentage < 90:
        recommendations.append(
            f"Coverage of {coverage_percentage:.1f}% is good; optimise the existing service points"
        )
    else:
        recommendations.append(
            f"Coverage of {coverage_percentage:.1f}% is excellent; focus on service quality"
        )

    if avg_distance > settings.GEO_AVG_DISTANCE_WARNING_KM:
        recommendations.append(
            f"Average distance to the nearest service point is {avg_distance:.2f} km; "
            "review the geographic spread of service points"
        )

    if uncovered_count > settings.GEO_UNCOVERED_ALERT_COUNT:
        recommendations.append(f"{uncovered_count} customers are outside the {radius_km:g} km service radius")

    if optimal_locations:
        best = optimal_locations[0]
        recommendations.append(
            f"A new site near ({best.latitude:.4f}, {best.longitude:.4f}) would serve "
            f"{best.potential_coverage} currently uncovered customers"
        )

    return recommendations


# ============================================================
# Public API
# ============================================================


def coverage(
    customers: Sequence[CustomerLocation],
    service_points: Sequence[ServicePoint],
    radius_km: Optional[float] = None,
    max_optimal_locations: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> ServiceCoverageResult:
    """
    Classify customers as covered or uncovered and propose new sites.

    Degenerate inputs have defined outputs: no eligible customers gives
    100% (vacuous) coverage, and no service points gives 0% coverage with
    zero distance statistics.
    """
    radius_km = settings.GEO_DEFAULT_COVERAGE_RADIUS_KM if radius_km is None else float(radius_km)

    points = eligible(customers)
    sites = eligible(service_points or [])
    n = len(points)

    with track_analysis_execution("coverage", n):
        check_cancelled(token, "coverage")

        coords = coordinates_array(points)
        site_coords = coordinates_array(sites)

        if n and sites:
            matrix = haversine_matrix_km(coords, site_coords)
            nearest = matrix.min(axis=1)
        else:
            matrix = np.zeros((n, len(sites)))
            nearest = np.full(n, np.inf)

        covered_mask = nearest <= radius_km
        covered = int(covered_mask.sum())
        uncovered = [c for c, hit in zip(points, covered_mask) if not hit]

        percentage = 100.0 if n == 0 else round(covered / n * 100, 1)
        if n and sites:
            avg_distance = round(float(nearest.mean()), 2)
            max_distance = round(float(nearest.max()), 2)
        else:
            avg_distance = max_distance = 0.0

        optimal = find_optimal_locations(uncovered, radius_km, max_optimal_locations, token)

        per_site = []
        for j, site in enumerate(sites):
            check_cancelled(token, "coverage")
            per_site.append(analyze_service_point(site, points, matrix[:, j], radius_km))

        recommendations = build_recommendations(
            n,
            bool(sites),
            percentage,
            avg_distance,
            len(uncovered),
            radius_km,
            optimal,
        )

    observe_coverage(percentage)
    logger.debug(
        f"Coverage {percentage}% ({covered}/{n}) at {radius_km} km with {len(sites)} service points"
    )

    return ServiceCoverageResult(
        total_customers=n,
        coverage_radius_km=radius_km,
        coverage_percentage=percentage,
        covered_customers=covered,
        uncovered_customers=uncovered,
        avg_distance_to_service=avg_distance,
        max_distance_to_service=max_distance,
        recommendations=recommendations,
        optimal_locations=optimal,
        service_points=per_site,
    )
