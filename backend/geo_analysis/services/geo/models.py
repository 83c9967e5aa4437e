"""
Domain records for the geo analysis engine.

Inputs (CustomerLocation, ServicePoint) are frozen; derived records are
plain dataclasses rebuilt on every run and never shared between runs.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class ServicePointType(str, Enum):
    """Kind of physical service location."""

    BRANCH = "branch"
    BANKING_UNIT = "bankingUnit"


class PotentialLevel(str, Enum):
    """Business potential tier of a cluster."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Trend(str, Enum):
    """Customer growth trend of a region."""

    SURGE = "surge"
    GROWING = "growing"
    STABLE = "stable"
    DECLINING = "declining"


class Priority(str, Enum):
    """Priority of a proposed service site."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RegionPartition(str, Enum):
    """How customers are grouped into forecast regions."""

    CLUSTER = "cluster"
    GRID = "grid"


# ============================================================
# Inputs
# ============================================================


@dataclass(frozen=True)
class CustomerLocation:
    """Customer (shop) location; coordinates are None when unusable."""

    id: str
    shop_name: str
    latitude: Optional[float]
    longitude: Optional[float]
    monthly_profit: float = 0.0
    business_type: str = "unknown"
    status: str = "active"
    created_at: Optional[datetime] = None
    banking_unit_id: Optional[str] = None

    @property
    def point(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class ServicePoint:
    """Branch or banking unit location."""

    id: str
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    type: ServicePointType = ServicePointType.BRANCH

    @property
    def point(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


# ============================================================
# Clustering
# ============================================================


@dataclass
class GeoCluster:
    """Spatial cluster of customers."""

    id: str
    centroid: tuple[float, float]
    radius: float  # km
    customer_count: int
    total_revenue: float
    avg_revenue: float
    density: float  # customers per km²
    potential: PotentialLevel
    characteristics: list[str]
    customers: list[CustomerLocation]
    business_types: dict[str, int] = field(default_factory=dict)
    h3_cells: list[str] = field(default_factory=list)
    color: str = ""


@dataclass
class ClusterMetrics:
    """Quality and convergence figures of a clustering run."""

    requested_clusters: int
    effective_clusters: int
    total_clusters: int
    iterations: int
    converged: bool
    inertia: float
    silhouette_score: float
    high_potential_clusters: int
    low_potential_clusters: int


@dataclass
class ClusteringResult:
    """Clusters plus run metrics and the customer -> cluster mapping."""

    clusters: list[GeoCluster]
    metrics: ClusterMetrics
    assignments: dict[str, str] = field(default_factory=dict)


# ============================================================
# Forecasting
# ============================================================


@dataclass
class SalesForecast:
    current_monthly: float
    predicted_monthly: float
    change_percent: float


@dataclass
class RegionalForecast:
    """Growth projection and expansion attractiveness of one region."""

    region_id: str
    region_name: str
    center: tuple[float, float]
    current_customers: int
    predicted_customers: int
    growth_rate: float  # percent, signed
    trend: Trend
    expansion_score: int  # 0-100
    best_months_for_expansion: list[str]
    confidence_interval: tuple[float, float]
    recommended_actions: list[str]
    sales_forecast: SalesForecast
    coverage_gap: float  # share of region customers outside coverage
    score_breakdown: dict[str, float] = field(default_factory=dict)
    active_share: float = 1.0  # share of region customers with status "active"


@dataclass
class ExpansionSuggestion:
    """Region proposed for expansion with the reasons behind its score."""

    region_id: str
    area: str
    coordinates: tuple[float, float]
    score: int
    trend: Trend
    reasons: list[str]


@dataclass
class ForecastingResult:
    forecasts: list[RegionalForecast]
    expansion_suggestions: list[ExpansionSuggestion]
    overall_growth: float
    as_of: Optional[date]


# ============================================================
# Coverage
# ============================================================


@dataclass
class OptimalLocation:
    """Proposed new service site."""

    latitude: float
    longitude: float
    potential_coverage: int
    priority: Priority
    reason: str
    estimated_monthly_revenue: float = 0.0


@dataclass
class CoverageGap:
    """Uncovered customers lying in one compass direction."""

    direction: str
    distance: float  # average km from the service point
    potential_customers: int


@dataclass
class ServicePointCoverage:
    """Radius analysis of a single service point."""

    service_point_id: str
    name: str
    type: ServicePointType
    customers_in_radius: int
    total_covered_revenue: float
    coverage_percentage: float
    gaps: list[CoverageGap]


@dataclass
class ServiceCoverageResult:
    """Coverage of the customer base by existing service points."""

    total_customers: int
    coverage_radius_km: float
    coverage_percentage: float
    covered_customers: int
    uncovered_customers: list[CustomerLocation]
    avg_distance_to_service: float
    max_distance_to_service: float
    recommendations: list[str]
    optimal_locations: list[OptimalLocation]
    service_points: list[ServicePointCoverage] = field(default_factory=list)


# ============================================================
# Orchestration
# ============================================================


@dataclass(frozen=True)
class AnalysisOptions:
    """Tunable parameters of a run (validated by the orchestrator)."""

    cluster_count: int = 5
    coverage_radius_km: float = 5.0
    grid_resolution: int = 8
    region_partition: RegionPartition = RegionPartition.CLUSTER
    forecast_horizon_months: int = 3
    as_of: Optional[date] = None
    max_optimal_locations: int = 3
    max_expansion_suggestions: int = 5


@dataclass
class DataQualityReport:
    """Counts of records analysed and excluded at the input boundary."""

    total_customers: int
    eligible_customers: int
    excluded_customers: int
    outside_territory: int
    total_service_points: int
    eligible_service_points: int
    excluded_service_points: int


@dataclass
class GeoAnalysisResult:
    clusters: list[GeoCluster]
    cluster_metrics: ClusterMetrics
    forecasts: list[RegionalForecast]
    expansion_suggestions: list[ExpansionSuggestion]
    coverage: ServiceCoverageResult
    data_quality: DataQualityReport
    options: AnalysisOptions
