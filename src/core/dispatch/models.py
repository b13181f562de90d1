# src/core/dispatch/models.py
"""
Dispatch saga state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.common.constants import SagaPhase
from src.core.bookings.models import Location, utc_now


class DispatchSagaState(BaseModel):
    """Progress of one booking through search, broadcast and acceptance."""

    booking_id: str
    customer_id: str
    pickup: Location
    destination: Optional[Location] = None
    phase: SagaPhase = SagaPhase.SEARCHING
    attempt: int = 1
    search_radius_km: float = 1.0
    notified_driver_ids: list[str] = Field(default_factory=list)
    rejected_driver_ids: list[str] = Field(default_factory=list)
    accepted_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def everyone_rejected(self) -> bool:
        """Every driver of the current broadcast declined."""
        return bool(self.notified_driver_ids) and set(self.notified_driver_ids) <= set(self.rejected_driver_ids)
