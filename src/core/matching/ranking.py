# src/core/matching/ranking.py
"""
Distance ranking of driver candidates around a reference point.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable

from src.core.matching.models import DriverCandidate

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points.

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in kilometers, full precision
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = (math.sin(dphi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def rank_by_distance(
    ref_lat: float,
    ref_lon: float,
    candidates: Iterable[DriverCandidate],
    radius_km: float,
) -> list[DriverCandidate]:
    """
    Keeps candidates within radius_km of the reference point, nearest first.

    Filtering compares the unrounded distance; the returned candidates carry
    the distance rounded to 2 decimals. Ties are broken by driver_id.
    """
    ranked: list[tuple[float, str, DriverCandidate]] = []
    for candidate in candidates:
        distance = haversine_km(ref_lat, ref_lon, candidate.latitude, candidate.longitude)
        if distance <= radius_km:
            ranked.append((distance, candidate.driver_id, candidate))

    ranked.sort(key=lambda item: (item[0], item[1]))
    return [replace(c, distance_km=round(d, 2)) for d, _, c in ranked]
