# src/core/matching/__init__.py
"""
Driver matching.
Distance ranking and candidate search for bookings.
"""

from src.core.matching.models import CustomerPreferences, DriverCandidate, MatchRequest, MatchResult
from src.core.matching.ranking import haversine_km, rank_by_distance
from src.core.matching.service import DriverMatcher

__all__ = [
    "CustomerPreferences",
    "DriverCandidate",
    "MatchRequest",
    "MatchResult",
    "haversine_km",
    "rank_by_distance",
    "DriverMatcher",
]
