# src/core/bookings/state_machine.py
"""
Booking lifecycle rules.

Pure validation: given a booking, an actor and a requested status, produce the
persistence intent (TransitionPlan) or raise. Nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from src.common.constants import ActorRole, BookingStatus
from src.common.errors import Conflict, InvalidTransition, Unauthorized
from src.core.bookings.models import Booking


# REJECTED is a per-driver outcome: the booking itself stays PENDING
VALID_TRANSITIONS: dict[BookingStatus, tuple[BookingStatus, ...]] = {
    BookingStatus.PENDING: (BookingStatus.ACCEPTED, BookingStatus.CANCELLED, BookingStatus.REJECTED),
    BookingStatus.ACCEPTED: (BookingStatus.CANCELLED, BookingStatus.ONGOING),
    BookingStatus.ONGOING: (BookingStatus.COMPLETED,),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
}

ROLE_TRANSITIONS: dict[ActorRole, dict[BookingStatus, tuple[BookingStatus, ...]]] = {
    ActorRole.CUSTOMER: {
        BookingStatus.PENDING: (BookingStatus.CANCELLED,),
        BookingStatus.ACCEPTED: (BookingStatus.CANCELLED,),
    },
    ActorRole.DRIVER: {
        BookingStatus.PENDING: (BookingStatus.ACCEPTED, BookingStatus.REJECTED),
        BookingStatus.ACCEPTED: (BookingStatus.CANCELLED, BookingStatus.ONGOING),
        BookingStatus.ONGOING: (BookingStatus.COMPLETED,),
    },
    ActorRole.SYSTEM: {
        BookingStatus.PENDING: (BookingStatus.CANCELLED,),
    },
}

# Column stamped with the transition time
_TIMESTAMP_FIELDS: dict[BookingStatus, str] = {
    BookingStatus.ACCEPTED: "accepted_at",
    BookingStatus.REJECTED: "rejected_at",
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.ONGOING: "started_at",
    BookingStatus.COMPLETED: "completed_at",
}


@dataclass(frozen=True)
class TransitionPlan:
    """What the repository must write for an approved transition."""
    role: ActorRole
    requested: BookingStatus
    expected_status: BookingStatus
    new_status: BookingStatus
    require_unassigned: bool = False
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def needs_eligibility(self) -> bool:
        """Accept and reject are only open to drivers who were offered the booking."""
        return self.requested in (BookingStatus.ACCEPTED, BookingStatus.REJECTED)


class BookingStateMachine:
    """Validates booking transitions by current status and actor role."""

    @staticmethod
    def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, ())

    @staticmethod
    def resolve_role(booking: Booking, actor_id: str) -> ActorRole:
        """
        Works out who the actor is relative to the booking.

        While no driver is assigned, any non-customer actor is a candidate
        driver; eligibility is checked separately.

        Raises:
            Unauthorized: actor is neither the customer nor the assigned driver
        """
        if actor_id == booking.customer_id:
            return ActorRole.CUSTOMER
        if booking.driver_id is None or booking.driver_id == actor_id:
            return ActorRole.DRIVER
        raise Unauthorized(
            "Actor is not a party to this booking",
            booking_id=booking.id,
            actor_id=actor_id,
        )

    def plan(
        self,
        booking: Booking,
        actor_id: str,
        target: BookingStatus,
        timestamp: datetime,
        actor_role: Optional[ActorRole] = None,
    ) -> TransitionPlan:
        """
        Validates a requested transition and returns the write intent.

        Args:
            booking: Current booking snapshot
            actor_id: Who asks
            target: Requested status
            timestamp: Transition time
            actor_role: Forced role (used for the system actor)

        Raises:
            Conflict: a driver accepts/rejects a booking that is no longer PENDING
            Unauthorized: actor is not a party to the booking
            InvalidTransition: not allowed from the current status for this role
        """
        if target in (BookingStatus.ACCEPTED, BookingStatus.REJECTED) and booking.status != BookingStatus.PENDING:
            # late drivers are not parties to the booking any more
            role = actor_role or (ActorRole.CUSTOMER if actor_id == booking.customer_id else ActorRole.DRIVER)
            if role != ActorRole.DRIVER:
                raise InvalidTransition(booking.status, target, role)
            raise Conflict(
                "Booking already handled",
                booking_id=booking.id,
                status=booking.status.value,
            )

        role = actor_role or self.resolve_role(booking, actor_id)

        if not self.can_transition(booking.status, target):
            raise InvalidTransition(booking.status, target, role)
        if target not in ROLE_TRANSITIONS[role].get(booking.status, ()):
            raise InvalidTransition(booking.status, target, role)

        fields: dict[str, Any] = {_TIMESTAMP_FIELDS[target]: timestamp}
        new_status = target
        require_unassigned = False

        if target == BookingStatus.ACCEPTED:
            fields["driver_id"] = actor_id
            require_unassigned = True
        elif target == BookingStatus.REJECTED:
            new_status = BookingStatus.PENDING
        elif target == BookingStatus.CANCELLED:
            fields["cancelled_by"] = role

        return TransitionPlan(
            role=role,
            requested=target,
            expected_status=booking.status,
            new_status=new_status,
            require_unassigned=require_unassigned,
            fields=fields,
        )
