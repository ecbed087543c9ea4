"""
Geo helpers for location-filtered event search
"""

import math
from typing import Optional, Tuple

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0


def parse_location(location: Optional[str]) -> Optional[Tuple[float, float]]:
    """
    Parse a "lat,lng" string

    Returns:
        (lat, lng) tuple, or None when no location was given

    Raises:
        ValueError: If the string is not a valid coordinate pair
    """
    if location is None or not location.strip():
        return None

    parts = location.split(',')
    if len(parts) != 2:
        raise ValueError("Location must be formatted as 'lat,lng'")

    try:
        lat = float(parts[0].strip())
        lng = float(parts[1].strip())
    except ValueError:
        raise ValueError("Location must be formatted as 'lat,lng'")

    if math.isnan(lat) or math.isnan(lng) or not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValueError("Location coordinates are out of range")

    return lat, lng


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def bounding_box(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Approximate lat/lng box around a point, used to narrow the remote query
    before the exact haversine check

    Returns:
        (min_lat, max_lat, min_lng, max_lng)
    """
    lat_range = radius_km / KM_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    # Near the poles every longitude is in range
    lng_range = 180.0 if cos_lat < 1e-6 else radius_km / (KM_PER_DEGREE_LAT * cos_lat)
    return lat - lat_range, lat + lat_range, lng - lng_range, lng + lng_range
