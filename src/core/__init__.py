# src/core/__init__.py
"""
Dispatch domain layer.
Booking lifecycle, eligibility windows, matching, resilience and the dispatch saga.
"""

from src.core.bookings import Booking, BookingService, BookingStateMachine
from src.core.dispatch import DispatchSaga
from src.core.eligibility import EligibilityStore, RejectionStore
from src.core.matching import DriverMatcher
from src.core.resilience import ResilientCaller

__all__ = [
    "Booking",
    "BookingService",
    "BookingStateMachine",
    "DispatchSaga",
    "EligibilityStore",
    "RejectionStore",
    "DriverMatcher",
    "ResilientCaller",
]
