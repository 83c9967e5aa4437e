"""
Schemas for the Geo Analysis API.

Requests and responses use camelCase on the wire to match the dashboard
that consumes them. Option fields are deliberately loose here; range
checks live in the engine so every entry point rejects the same values
with the same error.
"""

from datetime import date, datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field
from pydantic.alias_generators import to_camel

from geo_analysis.core.config import settings
from geo_analysis.schemas.validators import (
    Amount,
    Identifier,
    LenientLatitude,
    LenientLongitude,
    TerritoryRing,
    Timestamp,
)
from geo_analysis.services.geo.models import (
    AnalysisOptions,
    CustomerLocation,
    PotentialLevel,
    Priority,
    RegionPartition,
    ServicePoint,
    ServicePointType,
    Trend,
)


class CamelModel(BaseModel):
    """Base model serialising field names in camelCase."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


def _latlng_pair(v: Any) -> Any:
    """Engine records carry (lat, lng) tuples; the wire format is an object."""
    if isinstance(v, (tuple, list)) and len(v) == 2:
        return {"lat": v[0], "lng": v[1]}
    return v


class Coordinates(CamelModel):
    lat: float = Field(..., description="Latitude", examples=[38.08])
    lng: float = Field(..., description="Longitude", examples=[46.29])


LatLng = Annotated[Coordinates, BeforeValidator(_latlng_pair)]


# ============================================================
# Requests
# ============================================================


class CustomerLocationIn(CamelModel):
    """Customer (shop) record as served by the data layer."""

    id: Identifier = Field(..., description="Customer identifier", examples=["CUST-001"])
    shop_name: str = Field(default="", description="Shop or owner name")
    latitude: LenientLatitude = None
    longitude: LenientLongitude = None
    monthly_profit: Amount = Field(default=0.0, description="Monthly profit (revenue proxy)")
    business_type: str = Field(default="unknown", description="Business category label")
    status: str = Field(default="active", description="Operational state")
    created_at: Timestamp = Field(default=None, description="Onboarding timestamp")
    banking_unit_id: Optional[Identifier] = Field(default=None, description="Serving banking unit")

    def to_domain(self) -> CustomerLocation:
        return CustomerLocation(
            id=self.id,
            shop_name=self.shop_name,
            latitude=self.latitude,
            longitude=self.longitude,
            monthly_profit=self.monthly_profit,
            business_type=self.business_type or "unknown",
            status=self.status,
            created_at=self.created_at,
            banking_unit_id=self.banking_unit_id,
        )


class ServicePointIn(CamelModel):
    """Branch or banking unit."""

    id: Identifier = Field(..., description="Service point identifier", examples=["BR-01"])
    name: str = Field(default="", description="Display name")
    latitude: LenientLatitude = None
    longitude: LenientLongitude = None
    type: ServicePointType = Field(default=ServicePointType.BRANCH, description="branch or bankingUnit")

    def to_domain(self) -> ServicePoint:
        return ServicePoint(
            id=self.id,
            name=self.name,
            latitude=self.latitude,
            longitude=self.longitude,
            type=self.type,
        )


class AnalysisOptionsIn(CamelModel):
    """Tunable analysis parameters; omitted values use configured defaults."""

    cluster_count: Optional[float] = Field(default=None, description="Requested number of clusters", examples=[5])
    coverage_radius: Optional[float] = Field(default=None, description="Coverage radius in km", examples=[5])
    grid_resolution: Optional[float] = Field(default=None, description="H3 grid resolution (0-15)", examples=[8])
    region_partition: Optional[str] = Field(default=None, description="cluster or grid", examples=["cluster"])
    forecast_horizon_months: Optional[float] = Field(default=None, description="Forecast horizon in months")
    as_of: Optional[date] = Field(default=None, description="Forecast reference date")
    max_optimal_locations: Optional[float] = Field(default=None, description="Number of new sites to propose")
    max_expansion_suggestions: Optional[float] = Field(default=None, description="Number of expansion suggestions")

    def to_domain(self) -> AnalysisOptions:
        def pick(value, default):
            return default if value is None else value

        return AnalysisOptions(
            cluster_count=pick(self.cluster_count, settings.GEO_DEFAULT_CLUSTER_COUNT),
            coverage_radius_km=pick(self.coverage_radius, settings.GEO_DEFAULT_COVERAGE_RADIUS_KM),
            grid_resolution=pick(self.grid_resolution, settings.GEO_DEFAULT_GRID_RESOLUTION),
            region_partition=pick(self.region_partition, RegionPartition.CLUSTER.value),
            forecast_horizon_months=pick(self.forecast_horizon_months, settings.GEO_FORECAST_HORIZON_MONTHS),
            as_of=self.as_of,
            max_optimal_locations=pick(self.max_optimal_locations, settings.GEO_MAX_OPTIMAL_LOCATIONS),
            max_expansion_suggestions=pick(self.max_expansion_suggestions, settings.GEO_MAX_EXPANSION_SUGGESTIONS),
        )


class GeoAnalysisRequest(CamelModel):
    """
    Input snapshot for a geo analysis run.

    Records with missing or unparseable coordinates are accepted and
    reported in dataQuality rather than rejected.
    """

    customers: list[CustomerLocationIn] = Field(default_factory=list)
    service_points: list[ServicePointIn] = Field(default_factory=list)
    options: AnalysisOptionsIn = Field(default_factory=AnalysisOptionsIn)
    territory: TerritoryRing = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "customers": [
                    {
                        "id": "CUST-001",
                        "shopName": "Bazaar Market",
                        "latitude": "38.0800",
                        "longitude": "46.2900",
                        "monthlyProfit": 1200,
                        "businessType": "grocery",
                        "status": "active",
                        "createdAt": "2024-03-14T10:00:00Z",
                    }
                ],
                "servicePoints": [
                    {"id": "BR-01", "name": "Central branch", "latitude": 38.08, "longitude": 46.29, "type": "branch"}
                ],
                "options": {"clusterCount": 5, "coverageRadius": 5, "gridResolution": 8},
            }
        }
    }

    def domain_customers(self) -> list[CustomerLocation]:
        return [c.to_domain() for c in self.customers]

    def domain_service_points(self) -> list[ServicePoint]:
        return [s.to_domain() for s in self.service_points]


class ForecastRequest(GeoAnalysisRequest):
    """Forecast input; without service points the coverage gap is unknown."""

    service_points: Optional[list[ServicePointIn]] = None

    def domain_service_points(self) -> Optional[list[ServicePoint]]:
        if self.service_points is None:
            return None
        return [s.to_domain() for s in self.service_points]


# ============================================================
# Responses
# ============================================================


class CustomerLocationOut(CamelModel):
    id: str
    shop_name: str
    latitude: Optional[float]
    longitude: Optional[float]
    monthly_profit: float
    business_type: str
    status: str
    created_at: Optional[datetime] = None
    banking_unit_id: Optional[str] = None


class GeoClusterOut(CamelModel):
    id: str
    centroid: LatLng
    radius: float = Field(..., description="Bounding radius in km")
    customer_count: int
    total_revenue: float
    avg_revenue: float
    density: float = Field(..., description="Customers per km²")
    potential: PotentialLevel
    characteristics: list[str]
    customers: list[CustomerLocationOut]
    business_types: dict[str, int]
    h3_cells: list[str]
    color: str


class ClusterMetricsOut(CamelModel):
    requested_clusters: int
    effective_clusters: int
    total_clusters: int
    iterations: int
    converged: bool
    inertia: float
    silhouette_score: float
    high_potential_clusters: int
    low_potential_clusters: int


class SalesForecastOut(CamelModel):
    current_monthly: float
    predicted_monthly: float
    change_percent: float


class RegionalForecastOut(CamelModel):
    region_id: str
    region_name: str
    center: LatLng
    current_customers: int
    predicted_customers: int
    growth_rate: float
    trend: Trend
    expansion_score: int
    best_months_for_expansion: list[str]
    confidence_interval: tuple[float, float]
    recommended_actions: list[str]
    sales_forecast: SalesForecastOut
    coverage_gap: float
    score_breakdown: dict[str, float]
    active_share: float


class ExpansionSuggestionOut(CamelModel):
    region_id: str
    area: str
    coordinates: LatLng
    score: int
    trend: Trend
    reasons: list[str]


class OptimalLocationOut(CamelModel):
    latitude: float
    longitude: float
    potential_coverage: int
    priority: Priority
    reason: str
    estimated_monthly_revenue: float


class CoverageGapOut(CamelModel):
    direction: str
    distance: float
    potential_customers: int


class ServicePointCoverageOut(CamelModel):
    service_point_id: str
    name: str
    type: ServicePointType
    customers_in_radius: int
    total_covered_revenue: float
    coverage_percentage: float
    gaps: list[CoverageGapOut]


class ServiceCoverageOut(CamelModel):
    total_customers: int
    coverage_radius_km: float
    coverage_percentage: float
    covered_customers: int
    uncovered_customers: list[CustomerLocationOut]
    avg_distance_to_service: float
    max_distance_to_service: float
    recommendations: list[str]
    optimal_locations: list[OptimalLocationOut]
    service_points: list[ServicePointCoverageOut]


class DataQualityOut(CamelModel):
    total_customers: int
    eligible_customers: int
    excluded_customers: int
    outside_territory: int
    total_service_points: int
    eligible_service_points: int
    excluded_service_points: int


class AnalysisOptionsOut(CamelModel):
    """Options after validation and clamping."""

    cluster_count: int
    coverage_radius_km: float
    grid_resolution: int
    region_partition: RegionPartition
    forecast_horizon_months: int
    as_of: Optional[date] = None
    max_optimal_locations: int
    max_expansion_suggestions: int


class GeoAnalysisResponse(CamelModel):
    """Combined result of a full geo analysis run."""

    clusters: list[GeoClusterOut]
    cluster_metrics: ClusterMetricsOut
    forecasts: list[RegionalForecastOut]
    expansion_suggestions: list[ExpansionSuggestionOut]
    coverage: ServiceCoverageOut
    data_quality: DataQualityOut
    options: AnalysisOptionsOut


class CoverageResponse(CamelModel):
    coverage: ServiceCoverageOut
    data_quality: DataQualityOut
    options: AnalysisOptionsOut


class ClusteringResponse(CamelModel):
    clusters: list[GeoClusterOut]
    cluster_metrics: ClusterMetricsOut
    assignments: dict[str, str]
    data_quality: DataQualityOut
    options: AnalysisOptionsOut


class ForecastResponse(CamelModel):
    forecasts: list[RegionalForecastOut]
    expansion_suggestions: list[ExpansionSuggestionOut]
    overall_growth: float
    as_of: Optional[date] = None
    clusters: list[GeoClusterOut]
    data_quality: DataQualityOut
    options: AnalysisOptionsOut
