"""
Spatial clustering of customer locations.

K-means runs on raw (lat, lng) degrees with Euclidean distance; at metro
scale the distortion is small. Radii and densities are reported in km.

Seeding is deterministic (maximin), so identical input always yields
identical clusters. There is no random seed anywhere in the default path.
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence

import h3
import numpy as np
from scipy.spatial.distance import cdist
from sklearn.metrics import silhouette_score

from geo_analysis.core.config import settings
from geo_analysis.core.metrics import observe_kmeans_iterations, track_analysis_execution
from geo_analysis.services.geo.cancellation import CancellationToken, check_cancelled
from geo_analysis.services.geo.geometry import bounding_circle_radius, coordinates_array, eligible
from geo_analysis.services.geo.models import (
    ClusteringResult,
    ClusterMetrics,
    CustomerLocation,
    GeoCluster,
    PotentialLevel,
)

logger = logging.getLogger(__name__)

CLUSTER_COLORS = [
    "#ef4444",
    "#f97316",
    "#eab308",
    "#22c55e",
    "#14b8a6",
    "#3b82f6",
    "#8b5cf6",
    "#ec4899",
    "#6366f1",
    "#84cc16",
]


@dataclass
class KMeansRun:
    """Raw k-means output over a coordinate array."""

    labels: np.ndarray
    centroids: np.ndarray
    iterations: int
    converged: bool


# ============================================================
# K-means core
# ============================================================


def distinct_location_count(coords: np.ndarray) -> int:
    if len(coords) == 0:
        return 0
    return int(np.unique(coords, axis=0).shape[0])


def effective_cluster_count(requested: int, coords: np.ndarray, max_clusters: Optional[int] = None) -> int:
    """Clamp k to [1, min(max_clusters, distinct locations)]; 0 for no points."""
    distinct = distinct_location_count(coords)
    if distinct == 0:
        return 0
    upper = min(max_clusters or settings.GEO_MAX_CLUSTERS, distinct)
    return max(1, min(int(requested), upper))


def maximin_seeds(coords: np.ndarray, k: int) -> list[int]:
    """
    Deterministic seeding.

    First seed is the point closest to the mean; every following seed is
    the point farthest from its nearest chosen seed. Ties go to the lowest
    index (argmin/argmax return the first occurrence).
    """
    mean = coords.mean(axis=0, keepdims=True)
    seeds = [int(cdist(coords, mean, "sqeuclidean")[:, 0].argmin())]

    nearest = cdist(coords, coords[seeds], "sqeuclidean")[:, 0]
    while len(seeds) < k:
        candidate = int(nearest.argmax())
        seeds.append(candidate)
        nearest = np.minimum(nearest, cdist(coords, coords[[candidate]], "sqeuclidean")[:, 0])

    return seeds


def _reseed_empty_clusters(
    coords: np.ndarray,
    labels: np.ndarray,
    centroids: np.ndarray,
) -> np.ndarray:
    """
    Move each empty centroid onto the point farthest from its nearest
    surviving centroid, and hand that point to the empty cluster.
    """
    k = len(centroids)
    counts = np.bincount(labels, minlength=k)

    for j in np.flatnonzero(counts == 0):
        surviving = np.flatnonzero(counts > 0)
        distances = cdist(coords, centroids[surviving], "sqeuclidean").min(axis=1)
        # never strip the last member of another cluster
        distances[counts[labels] <= 1] = -1.0
        candidate = int(distances.argmax())
        if distances[candidate] < 0:
            continue

        counts[labels[candidate]] -= 1
        labels[candidate] = j
        counts[j] = 1
        centroids[j] = coords[candidate]

    return labels


def run_kmeans(
    coords: np.ndarray,
    k: int,
    max_iterations: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> KMeansRun:
    """
    Lloyd iterations from maximin seeds.

    Stops when assignments no longer change or after max_iterations;
    hitting the cap is a normal outcome reported via `converged=False`.
    """
    max_iterations = max_iterations or settings.GEO_KMEANS_MAX_ITERATIONS
    centroids = coords[maximin_seeds(coords, k)].astype(float)
    labels = np.full(len(coords), -1, dtype=int)

    iterations = 0
    converged = False
    for iterations in range(1, max_iterations + 1):
        check_cancelled(token, "clustering")

        new_labels = cdist(coords, centroids, "sqeuclidean").argmin(axis=1)
        new_labels = _reseed_empty_clusters(coords, new_labels, centroids)

        if np.array_equal(new_labels, labels):
            converged = True
            break
        labels = new_labels

        for j in range(k):
            members = coords[labels == j]
            if len(members):
                centroids[j] = members.mean(axis=0)

    return KMeansRun(labels=labels, centroids=centroids, iterations=iterations, converged=converged)


def _inertia(coords: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> float:
    return float(((coords - centroids[labels]) ** 2).sum())


def _silhouette(coords: np.ndarray, labels: np.ndarray) -> float:
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels > len(coords) - 1:
        return 0.0
    sample_size = settings.GEO_SILHOUETTE_SAMPLE_SIZE
    return float(
        silhouette_score(
            coords,
            labels,
            sample_size=sample_size if len(coords) > sample_size else None,
            random_state=42,
        )
    )


# ============================================================
# Per-cluster derivation
# ============================================================


def _quantile_signal(value: float, low: float, high: float) -> int:
    """+1 at or above the upper bound, -1 at or below the lower one."""
    if high <= low:
        return 0
    if value >= high:
        return 1
    if value <= low:
        return -1
    return 0


def classify_potential(
    density: float,
    avg_revenue: float,
    density_bounds: tuple[float, float],
    revenue_bounds: tuple[float, float],
) -> PotentialLevel:
    """
    Potential tier from density and average revenue.

    Each signal adds +1 above its upper quantile and -1 below its lower
    quantile; the total is compared against GEO_POTENTIAL_*_SCORE.
    """
    score = _quantile_signal(density, *density_bounds) + _quantile_signal(avg_revenue, *revenue_bounds)

    if score >= settings.GEO_POTENTIAL_HIGH_SCORE:
        return PotentialLevel.HIGH
    if score <= settings.GEO_POTENTIAL_LOW_SCORE:
        return PotentialLevel.LOW
    return PotentialLevel.MEDIUM


def _tier_label(value: float, median: float, above: str, below: str, equal: str) -> str:
    if math.isclose(value, median, rel_tol=1e-9, abs_tol=1e-9):
        return equal
    return above if value > median else below


def describe_cluster(
    business_types: dict[str, int],
    avg_revenue: float,
    density: float,
    revenue_median: float,
    density_median: float,
) -> list[str]:
    """Up to three short descriptions: dominant type, revenue tier, density tier."""
    characteristics = []

    if business_types:
        # dict preserves first-seen order, so max() breaks ties by it
        dominant = max(business_types, key=business_types.get)
        characteristics.append(f"Mostly {dominant}")

    characteristics.append(
        _tier_label(avg_revenue, revenue_median, "Above-median revenue", "Below-median revenue", "Median revenue")
    )
    characteristics.append(
        _tier_label(density, density_median, "Dense customer base", "Sparse customer base", "Typical density")
    )

    return characteristics[:3]


def _h3_cells(members: Sequence[CustomerLocation], resolution: int) -> list[str]:
    cells = {}
    for c in members:
        cells.setdefault(h3.latlng_to_cell(c.latitude, c.longitude, resolution), None)
    return list(cells)


def _build_clusters(
    customers: list[CustomerLocation],
    coords: np.ndarray,
    labels: np.ndarray,
    grid_resolution: int,
) -> list[GeoCluster]:
    min_radius = settings.GEO_MIN_DENSITY_RADIUS_KM
    profits = np.asarray([c.monthly_profit for c in customers], dtype=float)

    raw = []
    for label in sorted(set(labels.tolist())):
        indices = np.flatnonzero(labels == label)
        members = [customers[i] for i in indices]
        member_coords = coords[indices]

        center = member_coords.mean(axis=0)
        centroid = (float(center[0]), float(center[1]))
        points = [tuple(p) for p in np.unique(member_coords, axis=0)]
        radius = bounding_circle_radius(centroid, points)

        total_revenue = float(profits[indices].sum())
        raw.append({
            "index": len(raw),
            "members": members,
            "centroid": centroid,
            "radius": radius,
            "total_revenue": total_revenue,
            "avg_revenue": total_revenue / len(members),
            "density": len(members) / (math.pi * max(radius, min_radius) ** 2),
            "business_types": dict(Counter(c.business_type for c in members)),
        })

    densities = np.asarray([r["density"] for r in raw])
    density_bounds = (
        float(np.quantile(densities, settings.GEO_POTENTIAL_LOW_QUANTILE)),
        float(np.quantile(densities, settings.GEO_POTENTIAL_HIGH_QUANTILE)),
    )
    revenue_bounds = (
        float(np.quantile(profits, settings.GEO_POTENTIAL_LOW_QUANTILE)),
        float(np.quantile(profits, settings.GEO_POTENTIAL_HIGH_QUANTILE)),
    )
    density_median = float(np.median(densities))
    revenue_median = float(np.median(profits))

    clusters = []
    for r in raw:
        i = r["index"]
        clusters.append(
            GeoCluster(
                id=f"cluster-{i + 1}",
                centroid=r["centroid"],
                radius=round(r["radius"], 3),
                customer_count=len(r["members"]),
                total_revenue=r["total_revenue"],
                avg_revenue=r["avg_revenue"],
                density=r["density"],
                potential=classify_potential(r["density"], r["avg_revenue"], density_bounds, revenue_bounds),
                characteristics=describe_cluster(
                    r["business_types"], r["avg_revenue"], r["density"], revenue_median, density_median
                ),
                customers=r["members"],
                business_types=r["business_types"],
                h3_cells=_h3_cells(r["members"], grid_resolution),
                color=CLUSTER_COLORS[i % len(CLUSTER_COLORS)],
            )
        )

    order = sorted(range(len(clusters)), key=lambda i: (-clusters[i].total_revenue, i))
    return [clusters[i] for i in order]


# ============================================================
# Public API
# ============================================================


def cluster_customers(
    customers: Sequence[CustomerLocation],
    k: Optional[int] = None,
    grid_resolution: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> ClusteringResult:
    """
    Partition eligible customers into at most k spatial clusters.

    Args:
        customers: customer records; those without coordinates are skipped
        k: requested cluster count, clamped to [1, min(GEO_MAX_CLUSTERS, distinct locations)]
        grid_resolution: H3 resolution used for each cluster's cell list
        token: optional cancellation token polled every iteration

    Returns:
        ClusteringResult; an empty cluster list when no customer is eligible
    """
    requested = settings.GEO_DEFAULT_CLUSTER_COUNT if k is None else int(k)
    resolution = settings.GEO_DEFAULT_GRID_RESOLUTION if grid_resolution is None else grid_resolution

    points = eligible(customers)
    coords = coordinates_array(points)
    effective = effective_cluster_count(requested, coords)

    if effective == 0:
        return ClusteringResult(
            clusters=[],
            metrics=ClusterMetrics(
                requested_clusters=requested,
                effective_clusters=0,
                total_clusters=0,
                iterations=0,
                converged=True,
                inertia=0.0,
                silhouette_score=0.0,
                high_potential_clusters=0,
                low_potential_clusters=0,
            ),
        )

    with track_analysis_execution("clustering", len(points)):
        run = run_kmeans(coords, effective, token=token)
        observe_kmeans_iterations(run.iterations)

        check_cancelled(token, "clustering")
        clusters = _build_clusters(points, coords, run.labels, resolution)

        metrics = ClusterMetrics(
            requested_clusters=requested,
            effective_clusters=effective,
            total_clusters=len(clusters),
            iterations=run.iterations,
            converged=run.converged,
            inertia=round(_inertia(coords, run.labels, run.centroids), 8),
            silhouette_score=round(_silhouette(coords, run.labels), 4),
            high_potential_clusters=sum(1 for c in clusters if c.potential == PotentialLevel.HIGH),
            low_potential_clusters=sum(1 for c in clusters if c.potential == PotentialLevel.LOW),
        )

    if not run.converged:
        logger.info(f"K-means stopped at iteration cap ({run.iterations}) for k={effective}")
    logger.debug(
        f"Clustered {len(points)} customers into {len(clusters)} clusters "
        f"(requested {requested}, iterations {run.iterations})"
    )

    assignments = {c.id: cluster.id for cluster in clusters for c in cluster.customers}
    return ClusteringResult(clusters=clusters, metrics=metrics, assignments=assignments)


def cluster(
    customers: Sequence[CustomerLocation],
    k: Optional[int] = None,
    grid_resolution: Optional[int] = None,
    token: Optional[CancellationToken] = None,
) -> list[GeoCluster]:
    """Clusters only; see cluster_customers."""
    return cluster_customers(customers, k, grid_resolution=grid_resolution, token=token).clusters
