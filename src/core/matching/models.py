# src/core/matching/models.py
"""
Matching data structures.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field


@dataclass
class DriverCandidate:
    """A driver that could serve a booking."""
    driver_id: str
    latitude: float
    longitude: float
    rating: float = 0.0
    vehicle_type: Optional[str] = None
    distance_km: float = 0.0
    name: Optional[str] = None
    plate_number: Optional[str] = None
    is_preferred: bool = False
    previous_trip_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriverCandidate:
        """Builds a candidate from a collaborator payload."""
        return cls(
            driver_id=str(data["driver_id"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            rating=float(data.get("rating") or 0.0),
            vehicle_type=data.get("vehicle_type"),
            distance_km=float(data.get("distance_km") or 0.0),
            name=data.get("name"),
            plate_number=data.get("plate_number"),
            is_preferred=bool(data.get("is_preferred", False)),
            previous_trip_count=int(data.get("previous_trip_count") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MatchRequest:
    """Input of a driver search."""
    latitude: float
    longitude: float
    radius_km: float
    excluded_driver_ids: list[str] = field(default_factory=list)
    preferred_driver_ids: list[str] = field(default_factory=list)
    customer_id: Optional[str] = None
    booking_id: Optional[str] = None
    vehicle_type: Optional[str] = None


@dataclass
class MatchResult:
    """Outcome of a driver search. success=False is a normal negative answer."""
    candidates: list[DriverCandidate]
    success: bool
    message: str

    @classmethod
    def empty(cls, message: str) -> MatchResult:
        return cls(candidates=[], success=False, message=message)

    @property
    def driver_ids(self) -> list[str]:
        return [c.driver_id for c in self.candidates]


class CustomerPreferences(BaseModel):
    """Filters a customer applies to candidates."""
    preferred_vehicle_types: list[str] = Field(default_factory=lambda: ["motorcycle", "car"])
    min_rating: float = 3.0
    max_distance_km: float = 5.0

    @classmethod
    def defaults(cls) -> CustomerPreferences:
        from src.config import settings

        return cls(
            preferred_vehicle_types=list(settings.search.DEFAULT_VEHICLE_TYPES),
            min_rating=settings.search.DEFAULT_MIN_RATING,
            max_distance_km=settings.search.DEFAULT_MAX_DISTANCE_KM,
        )

    def allows(self, candidate: DriverCandidate) -> bool:
        if self.preferred_vehicle_types and candidate.vehicle_type not in self.preferred_vehicle_types:
            return False
        if candidate.rating < self.min_rating:
            return False
        return candidate.distance_km <= self.max_distance_km
