"""
Geo analysis sub-package.

Contains the geospatial analytics engine:
- Geometry kernel (haversine, point-in-polygon, bounding circle)
- Clustering with potential tiers
- Regional growth forecasting and expansion ranking
- Service coverage and greedy site selection
- Orchestrator running all of the above over one snapshot
"""

from geo_analysis.services.geo.cancellation import CancellationToken
from geo_analysis.services.geo.clustering import cluster, cluster_customers
from geo_analysis.services.geo.coverage import coverage, find_optimal_locations
from geo_analysis.services.geo.forecasting import forecast, forecast_regions
from geo_analysis.services.geo.geometry import (
    bounding_circle_radius,
    haversine_distance_km,
    point_in_polygon,
)
from geo_analysis.services.geo.orchestrator import (
    perform_clustering,
    perform_coverage_analysis,
    perform_forecasting,
    perform_full_geo_analysis,
    validate_options,
)
from geo_analysis.services.geo.snapshot import AnalysisSnapshot, build_snapshot

__all__ = [
    "AnalysisSnapshot",
    "CancellationToken",
    "bounding_circle_radius",
    "build_snapshot",
    "cluster",
    "cluster_customers",
    "coverage",
    "find_optimal_locations",
    "forecast",
    "forecast_regions",
    "haversine_distance_km",
    "perform_clustering",
    "perform_coverage_analysis",
    "perform_forecasting",
    "perform_full_geo_analysis",
    "point_in_polygon",
    "validate_options",
]
