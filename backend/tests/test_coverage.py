"""
Tests for service coverage analysis.

Tests cover:
- Coverage percentage and distance statistics
- Degenerate inputs (no customers, no service points, zero radius)
- Greedy optimal-location search
- Per service point direction gaps
- Recommendation texts
"""
import pytest

from conftest import TABRIZ, make_customer, make_service_point, offset
from geo_analysis.core.exceptions import AnalysisCancelledException
from geo_analysis.services.geo.cancellation import CancellationToken
from geo_analysis.services.geo.coverage import (
    build_recommendations,
    candidate_sites,
    coverage,
    find_optimal_locations,
)
from geo_analysis.services.geo.geometry import coordinates_array, haversine_distance_km
from geo_analysis.services.geo.models import CustomerLocation, OptimalLocation, Priority


@pytest.fixture
def north_and_south_uncovered() -> list[CustomerLocation]:
    """Six customers 20 km north of the centre, two 20 km south."""
    north = offset(TABRIZ, north_km=20.0)
    south = offset(TABRIZ, north_km=-20.0)
    return [
        make_customer(f"N{i}", offset(north, east_km=0.1 * i), monthly_profit=1000.0) for i in range(6)
    ] + [
        make_customer(f"S{i}", offset(south, east_km=0.5 * i), monthly_profit=400.0) for i in range(2)
    ]


class TestCoverageStatistics:
    """Tests for coverage percentage and distances."""

    def test_half_covered(self, branch):
        """One customer at the branch, one 20 km away."""
        customers = [make_customer("A", TABRIZ), make_customer("B", offset(TABRIZ, north_km=20.0))]

        result = coverage(customers, [branch], radius_km=5.0)

        assert result.coverage_percentage == 50.0
        assert result.covered_customers == 1
        assert [c.id for c in result.uncovered_customers] == ["B"]
        assert result.avg_distance_to_service == 10.0
        assert result.max_distance_to_service == 20.0

    def test_nearest_service_point_counts(self, branch):
        """A customer is covered by whichever service point is nearest."""
        far = offset(TABRIZ, north_km=20.0)
        customers = [make_customer("A", TABRIZ), make_customer("B", far)]

        result = coverage(customers, [branch, make_service_point("BR-02", far)], radius_km=5.0)

        assert result.coverage_percentage == 100.0
        assert result.uncovered_customers == []
        assert result.max_distance_to_service == 0.0

    def test_no_customers_is_fully_covered(self, branch):
        """No eligible customers means vacuous full coverage."""
        result = coverage([], [branch])

        assert result.total_customers == 0
        assert result.coverage_percentage == 100.0
        assert result.optimal_locations == []
        assert result.recommendations == [
            "No customers with valid coordinates were available for coverage analysis"
        ]

    def test_no_service_points(self, two_area_customers):
        result = coverage(two_area_customers, [], radius_km=5.0)

        assert result.coverage_percentage == 0.0
        assert result.covered_customers == 0
        assert len(result.uncovered_customers) == len(two_area_customers)
        assert result.avg_distance_to_service == 0.0
        assert result.max_distance_to_service == 0.0
        assert result.service_points == []
        assert result.optimal_locations
        assert result.recommendations[0] == "No service points were provided; every customer is currently unserved"

    def test_ineligible_records_skipped(self, branch):
        customers = [
            make_customer("A", TABRIZ),
            CustomerLocation(id="B", shop_name="B", latitude=None, longitude=None),
        ]
        result = coverage(customers, [branch])
        assert result.total_customers == 1
        assert result.coverage_percentage == 100.0

    def test_zero_radius(self, branch):
        """Only customers exactly at a service point are covered."""
        customers = [make_customer("A", TABRIZ), make_customer("B", offset(TABRIZ, north_km=1.0))]

        result = coverage(customers, [branch], radius_km=0.0)

        assert result.coverage_percentage == 50.0

    def test_monotonic_in_radius(self, two_area_customers, branch):
        percentages = [
            coverage(two_area_customers, [branch], radius_km=r).coverage_percentage
            for r in (0.5, 1.0, 5.0, 25.0)
        ]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100.0


class TestOptimalLocations:
    """Tests for the greedy site search."""

    def test_greedy_order(self, north_and_south_uncovered):
        """The dense group is served first, then the remainder."""
        locations = find_optimal_locations(north_and_south_uncovered, radius_km=5.0)

        assert [loc.potential_coverage for loc in locations] == [6, 2]
        assert [loc.priority for loc in locations] == [Priority.HIGH, Priority.HIGH]
        assert locations[0].estimated_monthly_revenue == 6000.0
        assert locations[0].reason == "Covers 6 unserved customers with 6,000 combined monthly profit"

        north = offset(TABRIZ, north_km=20.0)
        assert haversine_distance_km((locations[0].latitude, locations[0].longitude), north) < 5.0

    def test_max_locations(self, north_and_south_uncovered):
        locations = find_optimal_locations(north_and_south_uncovered, radius_km=5.0, max_locations=1)
        assert len(locations) == 1

        assert find_optimal_locations(north_and_south_uncovered, radius_km=5.0, max_locations=0) == []

    def test_zero_radius_falls_back_to_customer_location(self):
        """When no candidate covers anyone, a customer's own spot is used."""
        a = offset(TABRIZ, north_km=1.0)
        b = offset(TABRIZ, north_km=2.0)
        customers = [make_customer("A", a), make_customer("B", b)]

        locations = find_optimal_locations(customers, radius_km=0.0, max_locations=3)

        assert [loc.potential_coverage for loc in locations] == [1, 1]
        assert (locations[0].latitude, locations[0].longitude) == pytest.approx(a, abs=1e-6)

    def test_no_uncovered(self):
        assert find_optimal_locations([], radius_km=5.0) == []

    def test_potential_never_exceeds_uncovered(self, two_area_customers):
        locations = find_optimal_locations(two_area_customers, radius_km=2.0, max_locations=5)
        assert sum(loc.potential_coverage for loc in locations) <= len(two_area_customers)
        assert all(loc.potential_coverage >= 1 for loc in locations)

    def test_candidates_from_grid_for_small_sets(self):
        coords = coordinates_array([make_customer("A"), make_customer("B")])
        candidates = candidate_sites(coords)
        assert candidates.shape == (1, 2)
        assert tuple(candidates[0]) == pytest.approx(TABRIZ)


class TestServicePointBreakdown:
    """Tests for per service point analysis."""

    def test_direction_gaps(self, branch):
        customers = [make_customer("IN", TABRIZ)]
        customers += [make_customer(f"N{i}", offset(TABRIZ, north_km=10.0, east_km=0.1 * i)) for i in range(3)]
        customers += [make_customer("E0", offset(TABRIZ, east_km=10.0))]

        result = coverage(customers, [branch], radius_km=5.0)

        [point] = result.service_points
        assert point.service_point_id == "BR-01"
        assert point.customers_in_radius == 1
        assert point.coverage_percentage == 20.0
        assert [g.direction for g in point.gaps] == ["north", "east"]
        assert [g.potential_customers for g in point.gaps] == [3, 1]
        assert point.gaps[1].distance == pytest.approx(10.0, abs=0.01)

    def test_covered_revenue(self, branch):
        customers = [
            make_customer("A", TABRIZ, monthly_profit=700.0),
            make_customer("B", offset(TABRIZ, north_km=2.0), monthly_profit=300.0),
            make_customer("C", offset(TABRIZ, north_km=30.0), monthly_profit=5000.0),
        ]
        [point] = coverage(customers, [branch], radius_km=5.0).service_points
        assert point.total_covered_revenue == 1000.0


class TestRecommendations:
    """Tests for recommendation texts."""

    @pytest.mark.parametrize(
        "percentage, phrase",
        [
            (30.0, "critically low"),
            (60.0, "moderate"),
            (80.0, "good"),
            (95.0, "excellent"),
        ],
    )
    def test_coverage_tiers(self, percentage, phrase):
        recommendations = build_recommendations(10, True, percentage, 1.0, 0, 5.0, [])
        assert len(recommendations) == 1
        assert phrase in recommendations[0]

    def test_distance_and_uncovered_alerts(self):
        best = OptimalLocation(
            latitude=38.1,
            longitude=46.3,
            potential_coverage=7,
            priority=Priority.HIGH,
            reason="",
        )
        recommendations = build_recommendations(20, True, 40.0, 4.5, 12, 5.0, [best])

        assert "4.50 km" in recommendations[1]
        assert recommendations[2] == "12 customers are outside the 5 km service radius"
        assert recommendations[3] == "A new site near (38.1000, 46.3000) would serve 7 currently uncovered customers"


class TestCoverageCancellation:
    """Tests for cooperative cancellation."""

    def test_cancelled_token(self, two_area_customers, branch):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(AnalysisCancelledException) as exc_info:
            coverage(two_area_customers, [branch], token=token)

        assert exc_info.value.details == {"reason": "cancelled", "stage": "coverage"}
