"""
Shared Pydantic validators for common data types.

Location records come from a CRUD data layer where coordinates are
often strings, blank or missing. Those must not fail the whole request:
they parse to None and the record is excluded downstream.
"""

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, Field

from geo_analysis.services.geo.snapshot import (
    parse_amount,
    parse_latitude,
    parse_longitude,
    parse_timestamp,
)


def lenient_latitude(v: Any) -> Optional[float]:
    """Latitude as float, or None when missing or unparseable."""
    return parse_latitude(v)


def lenient_longitude(v: Any) -> Optional[float]:
    """Longitude as float, or None when missing or unparseable."""
    return parse_longitude(v)


def lenient_amount(v: Any) -> float:
    """Revenue figures default to 0 rather than rejecting the record."""
    return parse_amount(v)


def lenient_timestamp(v: Any) -> Optional[datetime]:
    """ISO timestamps or dates; anything else becomes None."""
    return parse_timestamp(v)


def validate_identifier(v: Any) -> str:
    """Accept string or numeric identifiers."""
    if v is None or isinstance(v, bool) or str(v).strip() == "":
        raise ValueError("Identifier is required")
    return str(v)


def validate_ring(v: Any) -> Optional[list[tuple[float, float]]]:
    """
    Validate a territory ring of [lng, lat] pairs.

    Degenerate rings are allowed (they contain nothing); malformed
    vertices are not.
    """
    if v is None:
        return None
    if not isinstance(v, (list, tuple)):
        raise ValueError("Territory must be a list of [lng, lat] vertices")
    ring = []
    for vertex in v:
        if not isinstance(vertex, (list, tuple)) or len(vertex) != 2:
            raise ValueError(f"Territory vertex must be [lng, lat], got {vertex}")
        lng = parse_longitude(vertex[0])
        lat = parse_latitude(vertex[1])
        if lng is None or lat is None:
            raise ValueError(f"Invalid territory vertex: {vertex}")
        ring.append((lng, lat))
    return ring


# Annotated types for use in Pydantic models
LenientLatitude = Annotated[
    Optional[float],
    BeforeValidator(lenient_latitude),
    Field(description="Latitude in degrees; strings accepted, invalid values excluded"),
]

LenientLongitude = Annotated[
    Optional[float],
    BeforeValidator(lenient_longitude),
    Field(description="Longitude in degrees; strings accepted, invalid values excluded"),
]

Amount = Annotated[float, BeforeValidator(lenient_amount)]

Timestamp = Annotated[Optional[datetime], BeforeValidator(lenient_timestamp)]

Identifier = Annotated[str, BeforeValidator(validate_identifier)]

TerritoryRing = Annotated[
    Optional[list[tuple[float, float]]],
    BeforeValidator(validate_ring),
    Field(description="Territory polygon as [lng, lat] vertices"),
]
