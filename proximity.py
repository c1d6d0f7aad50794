"""
Great-circle proximity search used to correlate citizen reports with a location.
"""
import math
from typing import Iterable

from schemas import CitizenReport, NearbyReport

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in km between two points given in decimal degrees."""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def round_km(distance: float) -> float:
    # Half-up to two decimals, not banker's rounding
    return math.floor(distance * 100 + 0.5) / 100


def nearby(
    reports: Iterable[CitizenReport],
    origin_lat: float,
    origin_lng: float,
    radius_km: float,
) -> list[NearbyReport]:
    """
    Return the reports within `radius_km` of the origin, annotated with distance_km.

    Reports without both coordinates are never included. Input order is kept;
    sort by distance_km if nearest-first is needed.
    """
    result = []
    for report in reports:
        if not report.has_coordinates:
            continue

        distance = haversine_km(origin_lat, origin_lng, report.latitude, report.longitude)
        if distance <= radius_km:
            result.append(NearbyReport(**report.model_dump(), distance_km=round_km(distance)))
    return result
