"""
Tests for the input boundary (parsing, exclusion, territory filter).
"""
from datetime import date, datetime

import pytest

from conftest import TABRIZ, make_customer, make_service_point, offset
from geo_analysis.schemas.validators import lenient_amount, lenient_timestamp
from geo_analysis.services.geo.models import CustomerLocation, ServicePointType
from geo_analysis.services.geo.snapshot import (
    build_snapshot,
    customer_from_mapping,
    parse_amount,
    parse_latitude,
    parse_longitude,
    parse_timestamp,
    restrict_to_territory,
    service_point_from_mapping,
)


class TestCoordinateParsing:
    """Tests for lenient coordinate parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("38.08", 38.08),
            (" 38.08 ", 38.08),
            (38.08, 38.08),
            (38, 38.0),
            ("-90", -90.0),
        ],
    )
    def test_valid_latitude(self, raw, expected):
        assert parse_latitude(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "nan", "inf", 90.5, "-91", True, [38.08]])
    def test_invalid_latitude(self, raw):
        assert parse_latitude(raw) is None

    def test_longitude_range(self):
        """Longitude allows up to ±180."""
        assert parse_longitude("179.9") == 179.9
        assert parse_longitude(180.1) is None


class TestValueParsing:
    """Tests for amount and timestamp parsing shared with the request schemas."""

    @pytest.mark.parametrize("raw", [None, "", "abc", True, "nan", float("inf"), {"amount": 5}])
    def test_unusable_amount_is_zero(self, raw):
        assert parse_amount(raw) == 0.0
        assert lenient_amount(raw) == 0.0

    def test_amount(self):
        assert parse_amount("1500.5") == 1500.5
        assert lenient_amount(2000) == 2000.0

    def test_date_becomes_midnight(self):
        expected = datetime(2024, 3, 15, 0, 0)
        assert parse_timestamp(date(2024, 3, 15)) == expected
        assert lenient_timestamp(date(2024, 3, 15)) == expected

    @pytest.mark.parametrize(
        "raw",
        ["2024-03-15T10:30:00Z", "2024-03-15", datetime(2024, 3, 15, 10, 30), "not a date", None, "", 1710498600],
    )
    def test_schema_and_record_parsing_agree(self, raw):
        assert lenient_timestamp(raw) == parse_timestamp(raw)

    def test_utc_suffix(self):
        parsed = parse_timestamp("2024-03-15T10:30:00Z")
        assert parsed.utcoffset().total_seconds() == 0
        assert parsed.hour == 10


class TestRecordMapping:
    """Tests for mapping -> record conversion."""

    def test_camel_case_customer(self):
        """camelCase keys from the data layer are understood."""
        customer = customer_from_mapping(
            {
                "id": 17,
                "shopName": "Bazaar",
                "latitude": "38.08",
                "longitude": "46.29",
                "monthlyProfit": "1500.5",
                "businessType": "grocery",
                "createdAt": "2024-03-14T10:00:00Z",
                "bankingUnitId": 4,
            }
        )
        assert customer.id == "17"
        assert customer.latitude == 38.08
        assert customer.monthly_profit == 1500.5
        assert customer.created_at.year == 2024
        assert customer.banking_unit_id == "4"

    def test_snake_case_customer(self):
        customer = customer_from_mapping({"id": "A", "latitude": 38.0, "longitude": 46.0, "monthly_profit": 10})
        assert customer.monthly_profit == 10.0
        assert customer.business_type == "unknown"

    def test_bad_fields_default(self):
        """Unparseable non-coordinate fields fall back to defaults."""
        customer = customer_from_mapping(
            {"id": "A", "latitude": 38.0, "longitude": 46.0, "monthlyProfit": "n/a", "createdAt": "yesterday"}
        )
        assert customer.monthly_profit == 0.0
        assert customer.created_at is None

    def test_missing_id(self):
        with pytest.raises(ValueError):
            customer_from_mapping({"latitude": 38.0, "longitude": 46.0})

    def test_service_point_type(self):
        point = service_point_from_mapping({"id": "U1", "latitude": 38, "longitude": 46, "type": "bankingUnit"})
        assert point.type == ServicePointType.BANKING_UNIT

    def test_unknown_service_point_type(self):
        with pytest.raises(ValueError):
            service_point_from_mapping({"id": "U1", "latitude": 38, "longitude": 46, "type": "kiosk"})


class TestBuildSnapshot:
    """Tests for snapshot construction."""

    def test_exclusion_counts(self):
        """Records without usable coordinates are counted, not raised."""
        customers = [
            make_customer("A"),
            {"id": "B", "latitude": "abc", "longitude": "46.29"},
            {"id": "C", "latitude": "38.1", "longitude": "46.3"},
            {"latitude": 38.0, "longitude": 46.0},  # no id
            CustomerLocation(id="D", shop_name="D", latitude=None, longitude=46.0),
        ]
        service_points = [
            make_service_point(),
            {"id": "BR-02", "latitude": None, "longitude": None},
        ]

        snapshot = build_snapshot(customers, service_points)

        assert [c.id for c in snapshot.customers] == ["A", "C"]
        assert snapshot.total_customers == 5
        assert snapshot.excluded_customers == 3
        assert snapshot.total_service_points == 2
        assert snapshot.excluded_service_points == 1

    def test_string_coordinates_on_records(self):
        """Typed records holding numeric strings are coerced to floats."""
        customer = CustomerLocation(id="A", shop_name="A", latitude="38.08", longitude="46.29")
        snapshot = build_snapshot([customer], [])
        assert snapshot.customers[0].latitude == 38.08
        assert isinstance(snapshot.customers[0].longitude, float)

    def test_inputs_not_mutated(self):
        """Input records are left untouched."""
        customers = [make_customer("A", created_at=datetime(2024, 1, 1))]
        before = list(customers)
        build_snapshot(customers, None)
        assert customers == before

    def test_empty(self):
        snapshot = build_snapshot([], None)
        assert snapshot.customers == ()
        assert snapshot.service_points == ()
        assert snapshot.excluded_customers == 0


class TestTerritoryFilter:
    """Tests for territory restriction."""

    def test_filters_outside_customers(self):
        inside = make_customer("IN", TABRIZ)
        outside = make_customer("OUT", offset(TABRIZ, north_km=50.0))
        snapshot = build_snapshot([inside, outside], [])

        ring = [(46.2, 38.0), (46.4, 38.0), (46.4, 38.2), (46.2, 38.2)]
        restricted = restrict_to_territory(snapshot, ring)

        assert [c.id for c in restricted.customers] == ["IN"]
        assert restricted.outside_territory == 1

    def test_no_ring_is_noop(self):
        snapshot = build_snapshot([make_customer("A")], [])
        assert restrict_to_territory(snapshot, None) is snapshot

    def test_degenerate_ring_contains_nothing(self):
        snapshot = build_snapshot([make_customer("A")], [])
        restricted = restrict_to_territory(snapshot, [(46.2, 38.0), (46.4, 38.2)])
        assert restricted.customers == ()
        assert restricted.outside_territory == 1
