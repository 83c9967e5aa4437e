"""
Input boundary: turns loosely typed location records into an immutable
snapshot of eligible customers and service points.

Records arrive from the data layer with coordinates as strings or numbers.
Anything that cannot be parsed is excluded and counted here, so the engines
only ever see records with usable coordinates.
"""
import math
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from geo_analysis.core.logging import get_logger
from geo_analysis.core.metrics import record_excluded_records
from geo_analysis.services.geo.geometry import has_valid_coordinates, point_in_polygon
from geo_analysis.services.geo.models import CustomerLocation, ServicePoint, ServicePointType

logger = get_logger(__name__)

CustomerInput = Union[CustomerLocation, Mapping[str, Any]]
ServicePointInput = Union[ServicePoint, Mapping[str, Any]]


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Eligible records plus the counts of what was dropped on the way in."""

    customers: tuple[CustomerLocation, ...]
    service_points: tuple[ServicePoint, ...]
    total_customers: int
    excluded_customers: int
    total_service_points: int
    excluded_service_points: int
    outside_territory: int = 0


# ============================================================
# Field parsing
# ============================================================


def parse_coordinate(value: Any, limit: float) -> Optional[float]:
    """
    Parse a latitude/longitude value.

    Returns None for missing, blank, non-numeric, non-finite or
    out-of-range (|value| > limit) input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed) or abs(parsed) > limit:
        return None
    return parsed


def parse_latitude(value: Any) -> Optional[float]:
    return parse_coordinate(value, 90.0)


def parse_longitude(value: Any) -> Optional[float]:
    return parse_coordinate(value, 180.0)


def parse_amount(value: Any) -> float:
    """Monetary value as float; missing or unusable input counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO string, date or datetime; dates become midnight, anything else None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _pick(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return default


def customer_from_mapping(record: Mapping[str, Any]) -> CustomerLocation:
    """
    Build a CustomerLocation from a camelCase or snake_case mapping.

    Raises:
        ValueError: if the record has no id
    """
    customer_id = _pick(record, "id")
    if customer_id is None or str(customer_id) == "":
        raise ValueError("customer record has no id")

    banking_unit_id = _pick(record, "bankingUnitId", "banking_unit_id")
    return CustomerLocation(
        id=str(customer_id),
        shop_name=str(_pick(record, "shopName", "shop_name", default="") or ""),
        latitude=parse_latitude(_pick(record, "latitude", "lat")),
        longitude=parse_longitude(_pick(record, "longitude", "lng")),
        monthly_profit=parse_amount(_pick(record, "monthlyProfit", "monthly_profit")),
        business_type=str(_pick(record, "businessType", "business_type", default="unknown") or "unknown"),
        status=str(_pick(record, "status", default="active") or "active"),
        created_at=parse_timestamp(_pick(record, "createdAt", "created_at")),
        banking_unit_id=str(banking_unit_id) if banking_unit_id is not None else None,
    )


def service_point_from_mapping(record: Mapping[str, Any]) -> ServicePoint:
    """
    Build a ServicePoint from a mapping.

    Raises:
        ValueError: if the record has no id or an unknown type
    """
    point_id = _pick(record, "id")
    if point_id is None or str(point_id) == "":
        raise ValueError("service point record has no id")

    raw_type = _pick(record, "type", default=ServicePointType.BRANCH.value)
    return ServicePoint(
        id=str(point_id),
        name=str(_pick(record, "name", default="") or ""),
        latitude=parse_latitude(_pick(record, "latitude", "lat")),
        longitude=parse_longitude(_pick(record, "longitude", "lng")),
        type=ServicePointType(raw_type),
    )


# ============================================================
# Snapshot
# ============================================================


def _normalize_customer(record: CustomerInput) -> Optional[CustomerLocation]:
    if isinstance(record, CustomerLocation):
        if has_valid_coordinates(record):
            return record
        return None
    try:
        customer = customer_from_mapping(record)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Customer record rejected: {e}")
        return None
    return customer if has_valid_coordinates(customer) else None


def _normalize_service_point(record: ServicePointInput) -> Optional[ServicePoint]:
    if isinstance(record, ServicePoint):
        return record if has_valid_coordinates(record) else None
    try:
        point = service_point_from_mapping(record)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Service point record rejected: {e}")
        return None
    return point if has_valid_coordinates(point) else None


def _coerce_floats(record):
    """Numeric strings on typed records become floats."""
    if isinstance(record.latitude, float) and isinstance(record.longitude, float):
        return record
    return replace(record, latitude=float(record.latitude), longitude=float(record.longitude))


def build_snapshot(
    customers: Iterable[CustomerInput],
    service_points: Optional[Iterable[ServicePointInput]] = None,
) -> AnalysisSnapshot:
    """
    Parse and filter raw records.

    Exclusions are logged and counted, never raised.
    """
    customers = list(customers or [])
    service_points = list(service_points or [])

    eligible_customers = []
    for record in customers:
        customer = _normalize_customer(record)
        if customer is not None:
            eligible_customers.append(_coerce_floats(customer))

    eligible_points = []
    for record in service_points:
        point = _normalize_service_point(record)
        if point is not None:
            eligible_points.append(_coerce_floats(point))

    excluded_customers = len(customers) - len(eligible_customers)
    excluded_points = len(service_points) - len(eligible_points)

    if excluded_customers or excluded_points:
        logger.warning(
            f"Excluded {excluded_customers} customers and {excluded_points} service points "
            "with missing or unparseable coordinates",
            extra={
                "excluded_customers": excluded_customers,
                "excluded_service_points": excluded_points,
                "total_customers": len(customers),
                "total_service_points": len(service_points),
            },
        )
    record_excluded_records("customer", excluded_customers)
    record_excluded_records("service_point", excluded_points)

    return AnalysisSnapshot(
        customers=tuple(eligible_customers),
        service_points=tuple(eligible_points),
        total_customers=len(customers),
        excluded_customers=excluded_customers,
        total_service_points=len(service_points),
        excluded_service_points=excluded_points,
    )


def restrict_to_territory(
    snapshot: AnalysisSnapshot,
    ring: Optional[Sequence[Sequence[float]]],
) -> AnalysisSnapshot:
    """
    Keep only customers inside a territory ring of (lng, lat) vertices.

    A missing ring leaves the snapshot untouched; a degenerate ring
    (fewer than three vertices) contains nothing.
    """
    if ring is None:
        return snapshot

    vertices = [(float(v[0]), float(v[1])) for v in ring]
    inside = tuple(
        c for c in snapshot.customers
        if point_in_polygon((c.longitude, c.latitude), vertices)
    )
    outside = len(snapshot.customers) - len(inside)
    if outside:
        logger.info(
            f"Territory filter removed {outside} customers",
            extra={"outside_territory": outside, "territory_vertices": len(vertices)},
        )
    return replace(snapshot, customers=inside, outside_territory=snapshot.outside_territory + outside)
