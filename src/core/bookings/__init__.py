# src/core/bookings/__init__.py
"""
Booking domain.
Models, storage, lifecycle rules and the booking service.
"""

from src.core.bookings.models import Booking, BookingCreateDTO, Location
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.bookings.state_machine import BookingStateMachine, TransitionPlan

__all__ = [
    "Booking",
    "BookingCreateDTO",
    "Location",
    "BookingRepository",
    "BookingService",
    "BookingStateMachine",
    "TransitionPlan",
]
