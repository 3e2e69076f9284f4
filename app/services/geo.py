"""
Great-circle distance helpers used for driver proximity and share compatibility.
"""
import math
from typing import NamedTuple

from app.services.exceptions import InvalidCoordinatesError

EARTH_RADIUS_KM = 6371.0


class Point(NamedTuple):
    lat: float
    lng: float


def validate_point(point: Point) -> Point:
    lat, lng = point
    if lat is None or lng is None:
        raise InvalidCoordinatesError("Coordinates are required")
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinatesError(f"Coordinates must be finite numbers, got ({lat}, {lng})")
    if not -90 <= lat <= 90:
        raise InvalidCoordinatesError(f"Latitude {lat} out of range [-90, 90]")
    if not -180 <= lng <= 180:
        raise InvalidCoordinatesError(f"Longitude {lng} out of range [-180, 180]")
    return Point(float(lat), float(lng))


def distance_km(a: Point, b: Point) -> float:
    """Haversine distance in km between two (lat, lng) points in degrees."""
    lat1, lng1 = validate_point(a)
    lat2, lng2 = validate_point(b)
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bounding_box(center: Point, radius_km: float) -> tuple[float, float, float, float]:
    """
    Returns (min_lat, max_lat, min_lng, max_lng) enclosing every point within
    `radius_km` of `center`. Used as a cheap SQL prefilter before the exact
    haversine check, so it errs on the wide side.
    """
    lat, lng = validate_point(center)
    dlat = math.degrees(radius_km / EARTH_RADIUS_KM)
    min_lat, max_lat = max(lat - dlat, -90.0), min(lat + dlat, 90.0)

    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat < 1e-6:
        return min_lat, max_lat, -180.0, 180.0
    dlng = math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat))
    if dlng >= 180:
        return min_lat, max_lat, -180.0, 180.0
    # Windows crossing the antimeridian fall back to the full longitude range
    if lng - dlng < -180 or lng + dlng > 180:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lng - dlng, lng + dlng
