"""Geographic distance helpers.

Haversine distances drive geofence arrival and broadcast throttling.
The squared degree-space helpers are planar approximations used only by
polyline simplification, where relative distances are all that matter.
"""

import math
from collections.abc import Sequence

EARTH_RADIUS_M = 6_371_000

METERS_PER_DEGREE_LAT = 111_320.0

# (latitude, longitude) in degrees
Coordinates = tuple[float, float]


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points given in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlambda = math.radians(lon2 - lon1) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(half_dlambda) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_distance_m(lat1, lon1, lat2, lon2) / 1000.0


def distance_between_m(a: Coordinates, b: Coordinates) -> float:
    """Haversine distance in meters between two (lat, lon) pairs."""
    return haversine_distance_m(a[0], a[1], b[0], b[1])


def is_within_proximity(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    threshold_m: float = 50.0,
) -> bool:
    """True when the two points are at most ``threshold_m`` meters apart.

    Runs on every location sample for arrival detection, so a degree-space
    box rejects far points before the trigonometry.
    """
    # Latitude scale on both axes, widened 1%: the box never rejects a match
    box = threshold_m / METERS_PER_DEGREE_LAT * 1.01
    if abs(lat2 - lat1) > box or abs(lon2 - lon1) > box:
        return False
    return haversine_distance_m(lat1, lon1, lat2, lon2) <= threshold_m


def is_valid_coordinate(point: object) -> bool:
    """True for a finite (lat, lon) pair inside the WGS84 range."""
    if not isinstance(point, (tuple, list)) or len(point) != 2:
        return False
    lat, lon = point
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def squared_distance(a: Coordinates, b: Coordinates) -> float:
    """Squared planar distance in degree-space."""
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    return dx * dx + dy * dy


def squared_segment_distance(p: Coordinates, a: Coordinates, b: Coordinates) -> float:
    """Squared planar distance from ``p`` to the segment ``a``-``b`` in degree-space."""
    x, y = a
    dx = b[0] - x
    dy = b[1] - y

    if dx != 0 or dy != 0:
        t = ((p[0] - x) * dx + (p[1] - y) * dy) / (dx * dx + dy * dy)
        if t > 1:
            x, y = b
        elif t > 0:
            x += dx * t
            y += dy * t

    dx = p[0] - x
    dy = p[1] - y
    return dx * dx + dy * dy


def path_length_m(points: Sequence[Coordinates]) -> float:
    """Cumulative Haversine length of a polyline in meters."""
    total = 0.0
    for i in range(1, len(points)):
        total += distance_between_m(points[i - 1], points[i])
    return total


def path_length_km(points: Sequence[Coordinates]) -> float:
    return path_length_m(points) / 1000.0
