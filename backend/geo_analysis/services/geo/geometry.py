"""
Geometry kernel shared by all analyses.

Conventions:
- Distance functions take (latitude, longitude) pairs in degrees and
  return kilometers.
- Polygon functions take (longitude, latitude) pairs, matching GeoJSON
  ring order. Callers holding (lat, lng) points must swap them first.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, TypeVar

import numpy as np

EARTH_RADIUS_KM = 6371.0

COMPASS_DIRECTIONS = (
    "north",
    "north-east",
    "east",
    "south-east",
    "south",
    "south-west",
    "west",
    "north-west",
)

LatLng = tuple[float, float]
LngLat = tuple[float, float]

T = TypeVar("T")


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @property
    def center(self) -> LatLng:
        return ((self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2)


def haversine_distance_km(a: LatLng, b: LatLng) -> float:
    """
    Great-circle distance between two points.

    The haversine term is clamped to [0, 1]; rounding can push it past
    1.0 for near-antipodal points, which would make sqrt(1 - h) fail.
    """
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    h = min(1.0, max(0.0, h))

    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def haversine_matrix_km(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Pairwise distances between two point sets.

    Args:
        a: (n, 2) array of (lat, lng) degrees
        b: (m, 2) array of (lat, lng) degrees

    Returns:
        (n, m) array of kilometers
    """
    a = np.asarray(a, dtype=float).reshape(-1, 2)
    b = np.asarray(b, dtype=float).reshape(-1, 2)
    if a.shape[0] == 0 or b.shape[0] == 0:
        return np.zeros((a.shape[0], b.shape[0]))

    lat1 = np.radians(a[:, 0])[:, None]
    lng1 = np.radians(a[:, 1])[:, None]
    lat2 = np.radians(b[:, 0])[None, :]
    lng2 = np.radians(b[:, 1])[None, :]

    h = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2) ** 2
    h = np.clip(h, 0.0, 1.0)

    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def nearest_distances_km(points: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """Distance from each point to its nearest target (inf when there are no targets)."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if points.shape[0] == 0:
        return np.zeros(0)
    if len(targets) == 0:
        return np.full(points.shape[0], np.inf)
    return haversine_matrix_km(points, targets).min(axis=1)


def point_in_polygon(point: LngLat, ring: Sequence[LngLat]) -> bool:
    """
    Even-odd ray casting test.

    Args:
        point: (lng, lat)
        ring: ordered (lng, lat) vertices; closing vertex optional

    Returns:
        False for rings with fewer than three vertices.
    """
    if ring is None or len(ring) < 3:
        return False

    x, y = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def bounding_circle_radius(center: LatLng, points: Sequence[LatLng]) -> float:
    """Max distance from center to any point; 0 for empty or singleton sets."""
    if len(points) <= 1:
        return 0.0
    distances = haversine_matrix_km(np.asarray([center], dtype=float), np.asarray(points, dtype=float))
    return float(distances.max())


def bounding_box(points: Sequence[LatLng]) -> Optional[BoundingBox]:
    if len(points) == 0:
        return None
    arr = np.asarray(points, dtype=float).reshape(-1, 2)
    return BoundingBox(
        min_lat=float(arr[:, 0].min()),
        min_lng=float(arr[:, 1].min()),
        max_lat=float(arr[:, 0].max()),
        max_lng=float(arr[:, 1].max()),
    )


def centroid(points: Sequence[LatLng]) -> Optional[LatLng]:
    """Arithmetic mean of coordinates (metro-scale approximation)."""
    if len(points) == 0:
        return None
    arr = np.asarray(points, dtype=float).reshape(-1, 2)
    mean = arr.mean(axis=0)
    return (float(mean[0]), float(mean[1]))


def initial_bearing(a: LatLng, b: LatLng) -> float:
    """Initial great-circle bearing from a to b in degrees [0, 360)."""
    lat1, lat2 = math.radians(a[0]), math.radians(b[0])
    dlng = math.radians(b[1] - a[1])

    y = math.sin(dlng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)

    return (math.degrees(math.atan2(y, x)) + 360) % 360


def compass_direction(bearing: float) -> str:
    """Map a bearing to one of eight compass directions."""
    index = int(round((bearing % 360) / 45)) % 8
    return COMPASS_DIRECTIONS[index]


def has_valid_coordinates(record) -> bool:
    """True when the record carries finite, in-range latitude and longitude."""
    lat = getattr(record, "latitude", None)
    lng = getattr(record, "longitude", None)
    if lat is None or lng is None:
        return False
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def eligible(records: Iterable[T]) -> list[T]:
    """Records with usable coordinates, in input order."""
    return [r for r in records if has_valid_coordinates(r)]


def coordinates_array(records: Sequence) -> np.ndarray:
    """(n, 2) array of (lat, lng) for records with valid coordinates."""
    if len(records) == 0:
        return np.zeros((0, 2))
    return np.asarray([(float(r.latitude), float(r.longitude)) for r in records], dtype=float)
