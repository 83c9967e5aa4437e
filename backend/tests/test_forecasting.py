"""
Tests for regional forecasting and expansion ranking.

Tests cover:
- Monthly acquisition series and the linear growth model
- Trend classification and customer prediction
- Best months for expansion
- Coverage gap and expansion score
- End-to-end forecasts over cluster and grid regions
"""
from datetime import date, datetime

import h3
import numpy as np
import pytest

from conftest import TABRIZ, make_customer, make_service_point, offset
from geo_analysis.services.geo.clustering import cluster
from geo_analysis.services.geo.forecasting import (
    REACTIVATION_ACTION,
    RECOMMENDED_ACTIONS,
    active_share,
    best_months,
    classify_trend,
    coverage_gap,
    expansion_score,
    forecast,
    forecast_regions,
    monthly_acquisitions,
    predict_customers,
    project_growth,
    recommended_actions,
    resolve_as_of,
)
from geo_analysis.services.geo.models import RegionPartition, Trend


def _by_type(forecasts, business_type):
    return next(f for f in forecasts if f.region_name.startswith(business_type))


class TestAcquisitionSeries:
    """Tests for the monthly acquisition counts."""

    def test_window_ends_at_reference_month(self):
        customers = [
            make_customer("A", created_at=datetime(2024, 12, 1)),
            make_customer("B", created_at=datetime(2024, 12, 20)),
            make_customer("C", created_at=datetime(2024, 1, 5)),
            make_customer("D", created_at=datetime(2023, 12, 31)),  # outside window
            make_customer("E"),  # undated
        ]

        counts = monthly_acquisitions(customers, date(2024, 12, 31), 12)

        assert counts.tolist() == [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 2]

    def test_future_records_ignored(self):
        customers = [make_customer("A", created_at=datetime(2024, 12, 20))]
        counts = monthly_acquisitions(customers, date(2024, 12, 10), 12)
        assert counts.sum() == 0

    def test_resolve_as_of(self):
        customers = [
            make_customer("A", created_at=datetime(2024, 3, 1)),
            make_customer("B", created_at=datetime(2024, 9, 9)),
            make_customer("C"),
        ]
        assert resolve_as_of(customers) == date(2024, 9, 9)
        assert resolve_as_of(customers, date(2020, 1, 1)) == date(2020, 1, 1)
        assert resolve_as_of([make_customer("C")]) is None


class TestGrowthModel:
    """Tests for the linear growth projection."""

    def test_flat_acquisitions(self):
        """One new customer a month projects three over a 3-month horizon."""
        projection = project_growth(12, np.ones(12), 3)

        assert projection.growth_rate == 25.0
        assert projection.predicted_customers == 15
        assert projection.confidence_interval == (15.0, 15.0)

    def test_accelerating_acquisitions(self):
        counts = np.array([0, 0, 0, 0, 0, 1, 1, 1, 2, 2, 3, 3], dtype=float)
        projection = project_growth(13, counts, 3)

        assert projection.growth_rate > 25.0
        assert classify_trend(projection.growth_rate) == Trend.SURGE
        low, high = projection.confidence_interval
        assert low <= projection.predicted_customers <= high

    def test_declining_acquisitions(self):
        """A falling series extrapolates below zero and projects shrinkage."""
        counts = np.array([6, 5, 4, 3, 2, 1, 0, 0, 0, 0, 0, 0], dtype=float)
        projection = project_growth(21, counts, 3)

        assert projection.growth_rate == pytest.approx(-35.3, abs=0.05)
        assert projection.predicted_customers == 14
        assert classify_trend(projection.growth_rate) == Trend.DECLINING

    @pytest.mark.parametrize(
        "counts",
        [
            np.zeros(12),
            np.array([0] * 11 + [2], dtype=float),  # below minimum history
            np.array([0] * 11 + [5], dtype=float),  # a single active month
        ],
    )
    def test_insufficient_history(self, counts):
        projection = project_growth(10, counts, 3)

        assert projection.growth_rate == 0.0
        assert projection.predicted_customers == 10
        assert classify_trend(projection.growth_rate) == Trend.STABLE

    def test_longer_horizon_widens_interval(self):
        counts = np.array([1, 0, 2, 1, 3, 0, 2, 4, 1, 3, 2, 5], dtype=float)
        short = project_growth(24, counts, 1)
        long = project_growth(24, counts, 12)

        assert (long.confidence_interval[1] - long.confidence_interval[0]) > (
            short.confidence_interval[1] - short.confidence_interval[0]
        )


class TestTrendAndPrediction:
    """Tests for thresholds and rounding."""

    @pytest.mark.parametrize(
        "growth, trend",
        [
            (40.0, Trend.SURGE),
            (15.1, Trend.SURGE),
            (15.0, Trend.GROWING),
            (0.1, Trend.GROWING),
            (0.0, Trend.STABLE),
            (-0.1, Trend.DECLINING),
        ],
    )
    def test_classify_trend(self, growth, trend):
        assert classify_trend(growth) == trend

    def test_predict_customers(self):
        assert predict_customers(10, 26.0) == 13
        assert predict_customers(10, -200.0) == 0
        assert predict_customers(0, 50.0) == 0

    def test_actions_per_trend(self):
        assert set(RECOMMENDED_ACTIONS) == set(Trend)
        assert all(RECOMMENDED_ACTIONS[t] for t in Trend)


class TestBestMonths:
    """Tests for best expansion months."""

    def test_top_months_with_calendar_tiebreak(self):
        months = [6, 7, 8, 9, 9, 10, 10, 11, 11, 11, 12, 12, 12]
        customers = [make_customer(f"C{i}", created_at=datetime(2024, m, 1)) for i, m in enumerate(months)]

        assert best_months(customers, customers, date(2024, 12, 31)) == ["November", "December", "September"]

    def test_fallback_to_population(self):
        """Too little regional history falls back to the whole population."""
        region = [make_customer("R", created_at=datetime(2024, 7, 1))]
        population = region + [
            make_customer(f"P{i}", created_at=datetime(2024, 4, 1)) for i in range(6)
        ]

        assert best_months(region, population, None)[0] == "April"

    def test_no_history(self):
        assert best_months([make_customer("A")], [make_customer("A")], None) == ["January", "February", "March"]


class TestCoverageGap:
    """Tests for the per-region coverage gap."""

    def test_unknown_without_service_points(self):
        assert coverage_gap([make_customer("A")], None, 5.0) == 0.0

    def test_empty_service_points(self):
        assert coverage_gap([make_customer("A")], [], 5.0) == 1.0

    def test_partial(self):
        customers = [make_customer("A"), make_customer("B", offset(TABRIZ, north_km=20.0))]
        assert coverage_gap(customers, [make_service_point()], 5.0) == 0.5


class TestExpansionScore:
    """Tests for the weighted expansion score."""

    def test_bounds(self):
        assert expansion_score(0.0, 0.0, 0.0)[0] == 0
        assert expansion_score(50.0, 1.0, 1.0)[0] == 100
        assert expansion_score(500.0, 5.0, 5.0)[0] == 100
        assert expansion_score(-80.0, -1.0, -1.0)[0] == 0

    def test_growth_contribution(self):
        score, breakdown = expansion_score(25.0, 0.0, 0.0)
        assert score == 20
        assert breakdown == {"growth": 20.0, "density": 0.0, "coverage": 0.0}

    def test_monotonic(self):
        base = expansion_score(10.0, 0.3, 0.2)[0]
        assert expansion_score(20.0, 0.3, 0.2)[0] >= base
        assert expansion_score(10.0, 0.6, 0.2)[0] >= base
        assert expansion_score(10.0, 0.3, 0.8)[0] >= base


class TestForecastRegions:
    """End-to-end forecasting tests."""

    def test_cluster_regions(self, dated_customers, branch):
        clusters = cluster(dated_customers, k=2)
        result = forecast_regions(dated_customers, clusters, service_points=[branch], coverage_radius_km=5.0)

        assert result.as_of == date(2024, 12, 15)
        assert len(result.forecasts) == 2
        assert {f.region_id for f in result.forecasts} == {c.id for c in clusters}

        centre = _by_type(result.forecasts, "grocery")
        suburb = _by_type(result.forecasts, "bakery")

        assert centre.trend == Trend.SURGE
        assert centre.growth_rate > 25.0
        assert centre.coverage_gap == 0.0
        assert centre.best_months_for_expansion == ["November", "December", "September"]
        assert centre.recommended_actions == RECOMMENDED_ACTIONS[Trend.SURGE]

        assert suburb.trend == Trend.DECLINING
        assert suburb.coverage_gap == 1.0
        assert suburb.best_months_for_expansion == ["January", "February", "March"]

        for f in result.forecasts:
            assert 0 <= f.expansion_score <= 100
            assert f.confidence_interval[0] <= f.confidence_interval[1]

    def test_suggestions_ranked_by_score(self, dated_customers, branch):
        clusters = cluster(dated_customers, k=2)
        result = forecast_regions(dated_customers, clusters, service_points=[branch], max_suggestions=1)

        assert len(result.expansion_suggestions) == 1
        top = result.expansion_suggestions[0]
        assert top.score == max(f.expansion_score for f in result.forecasts)
        assert len(top.reasons) == 4
        assert top.reasons[-1] == "100% of customers in the region are active"

    def test_reasons_follow_contributions(self, dated_customers):
        """Without service points the centre's growth dominates."""
        clusters = cluster(dated_customers, k=2)
        result = forecast_regions(dated_customers, clusters, service_points=None)

        top = result.expansion_suggestions[0]
        assert top.area.startswith("grocery")
        assert top.reasons[0].startswith("Projected customer growth of +")

    def test_grid_partition(self, dated_customers):
        result = forecast_regions(dated_customers, [], partition=RegionPartition.GRID, grid_resolution=7)

        assert result.forecasts
        assert all(h3.is_valid_cell(f.region_id) for f in result.forecasts)
        assert sum(f.current_customers for f in result.forecasts) == len(dated_customers)

    def test_undated_customers(self, two_area_customers):
        """No creation dates at all: zero growth, calendar-order months."""
        clusters = cluster(two_area_customers, k=2)
        result = forecast_regions(two_area_customers, clusters)

        assert result.as_of is None
        assert result.overall_growth == 0.0
        for f in result.forecasts:
            assert f.trend == Trend.STABLE
            assert f.predicted_customers == f.current_customers
            assert f.best_months_for_expansion == ["January", "February", "March"]

    def test_sales_forecast(self, dated_customers):
        clusters = cluster(dated_customers, k=2)
        centre = _by_type(forecast(dated_customers, clusters), "grocery")

        assert centre.sales_forecast.current_monthly == pytest.approx(13 * 800.0)
        assert centre.sales_forecast.predicted_monthly == pytest.approx(centre.predicted_customers * 800.0)

    def test_no_regions(self):
        result = forecast_regions([], [])
        assert result.forecasts == []
        assert result.expansion_suggestions == []
        assert result.overall_growth == 0.0


class TestCustomerActivity:
    """Tests for the active-customer share of a region."""

    def test_active_share(self):
        customers = [
            make_customer("A"),
            make_customer("B", status="inactive"),
            make_customer("C", status="suspended"),
            make_customer("D"),
        ]
        assert active_share(customers) == 0.5
        assert active_share([]) == 0.0

    def test_low_activity_adds_reactivation(self):
        assert recommended_actions(Trend.STABLE, 0.9) == RECOMMENDED_ACTIONS[Trend.STABLE]
        assert recommended_actions(Trend.STABLE, 0.25)[-1] == REACTIVATION_ACTION

    def test_dormant_region(self, branch):
        """Activity is reported but does not move the expansion score."""
        customers = [make_customer(f"A{i}", offset(TABRIZ, east_km=0.1 * i)) for i in range(4)]
        dormant = [
            make_customer(f"D{i}", offset(TABRIZ, east_km=0.1 * i), status="inactive" if i else "active")
            for i in range(4)
        ]

        active_result = forecast_regions(customers, cluster(customers, k=1), service_points=[branch])
        dormant_result = forecast_regions(dormant, cluster(dormant, k=1), service_points=[branch])

        [active_forecast] = active_result.forecasts
        [dormant_forecast] = dormant_result.forecasts
        assert active_forecast.active_share == 1.0
        assert dormant_forecast.active_share == 0.25
        assert dormant_forecast.expansion_score == active_forecast.expansion_score
        assert REACTIVATION_ACTION not in active_forecast.recommended_actions
        assert dormant_forecast.recommended_actions[-1] == REACTIVATION_ACTION
        assert dormant_result.expansion_suggestions[0].reasons[-1] == "25% of customers in the region are active"
