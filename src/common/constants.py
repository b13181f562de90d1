# src/common/constants.py
"""
Shared constants and enums.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Log message levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ActorRole(str, Enum):
    """Who is asking for a booking transition."""
    CUSTOMER = "customer"
    DRIVER = "driver"
    SYSTEM = "system"


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ONGOING = "ongoing"
    COMPLETED = "completed"


# Statuses that count as "customer already has a ride"
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.ACCEPTED,
    BookingStatus.ONGOING,
)

TERMINAL_BOOKING_STATUSES = (
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
)


class SagaPhase(str, Enum):
    """Dispatch saga phases."""
    SEARCHING = "searching"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    SETTLED = "settled"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


class VehicleType(str, Enum):
    """Vehicle classes a driver can serve with."""
    MOTORCYCLE = "motorcycle"
    CAR = "car"
