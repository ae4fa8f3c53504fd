from __future__ import annotations
import math

EARTH_RADIUS_M = 6_371_000.0

def _valid(lat, lng) -> bool:
    if lat is None or lng is None:
        return False
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance on a mean-radius sphere."""
    to_rad = math.radians
    d_lat = to_rad(lat2 - lat1)
    d_lng = to_rad(lng2 - lng1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(to_rad(lat1)) * math.cos(to_rad(lat2)) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))

def within_fence(point: tuple[float, float] | None, center: tuple[float, float] | None, radius_m: float | None) -> bool | None:
    """
    True when ``point`` lies within ``radius_m`` of ``center`` (boundary inclusive).

    Returns None when the check cannot be made (missing or invalid
    coordinates, bad radius); callers treat that as "skip the fence".
    """
    if not point or not center or radius_m is None:
        return None
    if not _valid(*point) or not _valid(*center):
        return None
    try:
        radius = float(radius_m)
    except (TypeError, ValueError):
        return None
    if math.isnan(radius) or radius < 0:
        return None
    return distance_meters(float(point[0]), float(point[1]), float(center[0]), float(center[1])) <= radius
