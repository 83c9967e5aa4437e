"""
Application configuration settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Geo Analysis Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # API Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_ANALYZE: str = "30/minute"
    RATE_LIMIT_COVERAGE: str = "120/minute"  # Radius slider re-runs

    # Clustering
    GEO_MAX_CLUSTERS: int = 10
    GEO_DEFAULT_CLUSTER_COUNT: int = 5
    GEO_KMEANS_MAX_ITERATIONS: int = 100
    GEO_MIN_DENSITY_RADIUS_KM: float = 0.5  # Floor for density area (500m)
    GEO_SILHOUETTE_SAMPLE_SIZE: int = 2000

    # Potential tiers: +1/-1 per signal against these quantiles
    GEO_POTENTIAL_HIGH_QUANTILE: float = 0.75
    GEO_POTENTIAL_LOW_QUANTILE: float = 0.25
    GEO_POTENTIAL_HIGH_SCORE: int = 2
    GEO_POTENTIAL_LOW_SCORE: int = -1

    # Grid (H3) partition
    GEO_DEFAULT_GRID_RESOLUTION: int = 8  # ~0.7 km² hexagons
    GEO_MIN_GRID_RESOLUTION: int = 0
    GEO_MAX_GRID_RESOLUTION: int = 15

    # Forecasting
    GEO_FORECAST_LOOKBACK_MONTHS: int = 12
    GEO_FORECAST_HORIZON_MONTHS: int = 3
    GEO_FORECAST_MAX_HORIZON_MONTHS: int = 24
    GEO_FORECAST_MIN_HISTORY: int = 3  # Dated customers inside the lookback window
    GEO_SEASONAL_MIN_HISTORY: int = 6
    GEO_BEST_MONTHS_COUNT: int = 3
    GEO_TREND_SURGE_THRESHOLD: float = 15.0  # growth % strictly above -> surge
    GEO_TREND_GROWING_THRESHOLD: float = 0.0
    GEO_TREND_DECLINING_THRESHOLD: float = 0.0  # growth % strictly below -> declining

    # Expansion score weights (sum to 1.0)
    GEO_EXPANSION_WEIGHT_GROWTH: float = 0.4
    GEO_EXPANSION_WEIGHT_DENSITY: float = 0.3
    GEO_EXPANSION_WEIGHT_COVERAGE: float = 0.3
    GEO_EXPANSION_GROWTH_CAP: float = 50.0
    GEO_MAX_EXPANSION_SUGGESTIONS: int = 5

    # Coverage
    GEO_DEFAULT_COVERAGE_RADIUS_KM: float = 5.0
    GEO_MAX_COVERAGE_RADIUS_KM: float = 100.0
    GEO_MAX_OPTIMAL_LOCATIONS: int = 3
    GEO_CANDIDATE_MIN_FOR_CLUSTERING: int = 6
    GEO_CANDIDATE_CLUSTERS: int = 8
    GEO_CANDIDATE_GRID_DEGREES: float = 0.03
    GEO_PRIORITY_HIGH_SHARE: float = 0.5
    GEO_PRIORITY_MEDIUM_SHARE: float = 0.2
    GEO_REGION_GAP_ALERT_SHARE: float = 0.5
    GEO_LOW_ACTIVE_SHARE: float = 0.4
    GEO_AVG_DISTANCE_WARNING_KM: float = 3.0
    GEO_UNCOVERED_ALERT_COUNT: int = 5
    GEO_MAX_DIRECTION_GAPS: int = 4

    # Execution
    GEO_PARALLEL_SUBANALYSES: bool = True
    GEO_ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Observability
    SENTRY_DSN: Optional[str] = None  # Set to enable Sentry error tracking
    METRICS_ENABLED: bool = True
    METRICS_PATH: str = "/metrics"

    def validate_production_settings(self) -> None:
        """Validate critical settings for production environment."""
        import logging
        import warnings

        logger = logging.getLogger(__name__)

        if self.ENVIRONMENT == "production":
            if self.DEBUG:
                raise ValueError("DEBUG must be False in production")

            insecure_origins = [o for o in self.CORS_ORIGINS if "localhost" in o or "127.0.0.1" in o]
            if insecure_origins:
                warnings.warn(
                    f"CORS_ORIGINS contains localhost entries: {insecure_origins}. "
                    "Consider removing for production.",
                    UserWarning,
                )

            if not self.SENTRY_DSN:
                logger.warning("SENTRY_DSN not configured. Error tracking disabled.")

        weights = (
            self.GEO_EXPANSION_WEIGHT_GROWTH
            + self.GEO_EXPANSION_WEIGHT_DENSITY
            + self.GEO_EXPANSION_WEIGHT_COVERAGE
        )
        if abs(weights - 1.0) > 1e-6:
            raise ValueError(f"GEO_EXPANSION_WEIGHT_* must sum to 1.0, got {weights}")

        if not 0.0 <= self.GEO_POTENTIAL_LOW_QUANTILE <= self.GEO_POTENTIAL_HIGH_QUANTILE <= 1.0:
            raise ValueError("GEO_POTENTIAL_*_QUANTILE must satisfy 0 <= low <= high <= 1")

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
