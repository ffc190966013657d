"""
Great-circle helpers for radius queries.
"""

import math

from airsentinel.contracts.constants import EARTH_RADIUS_NM
from airsentinel.contracts.validation import BoundingBox, GeoCircle


def haversine_nm(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in nautical miles between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi/2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda/2)**2
    return EARTH_RADIUS_NM * 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))


def circle_to_bbox(circle: GeoCircle) -> BoundingBox:
    """
    Approximate bounding box enclosing a circle.

    1 nm is 1/60 degree of latitude; longitude degrees shrink with cos(lat).
    The result is clamped to valid coordinate ranges, so it may be smaller
    than the circle near the poles or the antimeridian.
    """
    nm_to_deg_lat = 1 / 60
    cos_lat = math.cos(math.radians(circle.latitude))
    # At the poles every longitude is within range
    if cos_lat < 1e-6:
        lon_span = 180.0
    else:
        lon_span = circle.radius_nm / (60 * cos_lat)

    lat_span = circle.radius_nm * nm_to_deg_lat
    return BoundingBox(
        lat_min=max(-90.0, circle.latitude - lat_span),
        lat_max=min(90.0, circle.latitude + lat_span),
        lon_min=max(-180.0, circle.longitude - lon_span),
        lon_max=min(180.0, circle.longitude + lon_span),
    )


def within_radius(circle: GeoCircle, latitude: float, longitude: float) -> bool:
    return haversine_nm(circle.latitude, circle.longitude, latitude, longitude) <= circle.radius_nm
