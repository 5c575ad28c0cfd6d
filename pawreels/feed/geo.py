"""Great-circle helpers for the feed assembler."""

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = math.pi * EARTH_RADIUS_KM / 180.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres (spherical law of cosines)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)
    cosine = (
        math.sin(phi1) * math.sin(phi2)
        + math.cos(phi1) * math.cos(phi2) * math.cos(delta_lon)
    )
    # rounding can push identical points just past 1.0
    cosine = min(1.0, max(-1.0, cosine))
    return EARTH_RADIUS_KM * math.acos(cosine)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """
    Lat/lon box that contains every point within radius_km of (lat, lon).

    Used only as a SQL prefilter; callers still check the exact distance.
    Near the poles the longitude span opens to the full circle.
    """
    delta_lat = radius_km / KM_PER_DEGREE_LAT
    min_lat = max(-90.0, lat - delta_lat)
    max_lat = min(90.0, lat + delta_lat)

    # widest longitude span is at the poleward edge of the box
    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat <= 1e-6:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    delta_lon = radius_km / (KM_PER_DEGREE_LAT * cos_lat)
    min_lon = lon - delta_lon
    max_lon = lon + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
