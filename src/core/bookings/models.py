# src/core/bookings/models.py
"""
Booking data models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import (
    ACTIVE_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    ActorRole,
    BookingStatus,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Location(BaseModel):
    """A point on the map."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    address: Optional[str] = None


class Booking(BaseModel):
    """Booking (ride request)."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Booking UUID")
    customer_id: str = Field(..., description="Customer ID")
    driver_id: Optional[str] = Field(None, description="Assigned driver, None until accepted")

    pickup: Location
    destination: Location

    status: BookingStatus = Field(BookingStatus.PENDING)
    cancelled_by: Optional[ActorRole] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Still occupying the customer."""
        return self.status in ACTIVE_BOOKING_STATUSES

    @property
    def is_terminal(self) -> bool:
        """No further transitions possible."""
        return self.status in TERMINAL_BOOKING_STATUSES


class BookingCreateDTO(BaseModel):
    """Input for creating a booking."""

    customer_id: str
    pickup: Location
    destination: Location


class BookingPage(BaseModel):
    """One page of a user's bookings."""

    items: list[Booking]
    total: int
    page: int
    size: int


class CancelledBookingDTO(BaseModel):
    """A cancelled booking as seen by the matcher's blocking rule."""

    id: str
    customer_id: str
    driver_id: Optional[str] = None
    cancelled_by: Optional[ActorRole] = None
    cancelled_at: Optional[datetime] = None


class BookingHistoryDTO(BaseModel):
    """A completed booking as seen by the matcher's history ranking."""

    id: str
    customer_id: str
    driver_id: Optional[str] = None
    status: BookingStatus
    created_at: datetime
