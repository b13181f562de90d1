# src/core/bookings/service.py
"""
Booking service.
Creates bookings, runs every status change through the state machine and the
repository compare-and-set, and publishes the resulting domain events.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from src.common.constants import ActorRole, BookingStatus, TypeMsg
from src.common.errors import Conflict, NotFound, Unauthorized
from src.common.logger import log_info, log_warning
from src.core.bookings.models import (
    Booking,
    BookingCreateDTO,
    BookingHistoryDTO,
    BookingPage,
    CancelledBookingDTO,
    utc_now,
)
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine, TransitionPlan
from src.core.eligibility.store import EligibilityStore, RejectionStore
from src.infra.event_bus import DomainEvent, EventBus, EventTypes

_STATUS_EVENTS: dict[BookingStatus, str] = {
    BookingStatus.ACCEPTED: EventTypes.BOOKING_ACCEPTED,
    BookingStatus.REJECTED: EventTypes.BOOKING_REJECTED,
    BookingStatus.CANCELLED: EventTypes.BOOKING_CANCELLED,
    BookingStatus.ONGOING: EventTypes.BOOKING_ONGOING,
    BookingStatus.COMPLETED: EventTypes.BOOKING_COMPLETED,
}


class BookingService:
    """
    Booking lifecycle.

    Correctness of concurrent accepts rests on a single conditional update in
    the repository; eligibility is checked before it, cleanup happens after it.
    """

    def __init__(
        self,
        repository: BookingRepository,
        eligibility: EligibilityStore,
        rejections: RejectionStore,
        event_bus: EventBus,
        state_machine: Optional[BookingStateMachine] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            repository: Booking storage
            eligibility: Eligible driver sets
            rejections: Rejected driver sets
            event_bus: Event bus
            state_machine: Transition rules
            clock: Source of transition timestamps
        """
        self._repo = repository
        self._eligibility = eligibility
        self._rejections = rejections
        self._event_bus = event_bus
        self._state_machine = state_machine or BookingStateMachine()
        self._clock = clock

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_booking(self, data: BookingCreateDTO) -> Booking:
        """
        Creates a PENDING booking and announces it.

        Raises:
            Conflict: the customer already has an active booking
        """
        active = await self._repo.get_active_by_customer(data.customer_id)
        if active is not None:
            await log_warning(
                f"Customer {data.customer_id} already has active booking {active.id}",
            )
            raise Conflict(
                "Customer already has an active booking",
                booking_id=active.id,
                customer_id=data.customer_id,
            )

        booking = await self._repo.create(
            Booking(
                customer_id=data.customer_id,
                pickup=data.pickup,
                destination=data.destination,
                created_at=self._clock(),
            )
        )

        await self._publish(EventTypes.BOOKING_CREATED, {
            "booking_id": booking.id,
            "customer_id": booking.customer_id,
            "pickup": booking.pickup.model_dump(),
            "destination": booking.destination.model_dump(),
            "created_at": booking.created_at.isoformat(),
        })
        await log_info(f"Booking {booking.id} created for customer {booking.customer_id}", type_msg=TypeMsg.INFO)
        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        """
        Raises:
            NotFound: no such booking
        """
        booking = await self._repo.get_by_id(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking

    async def list_user_bookings(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        size: int = 10,
    ) -> BookingPage:
        """Bookings where the user is customer or driver, newest first."""
        page = max(page, 1)
        items = await self._repo.list_by_user(user_id, status, offset=(page - 1) * size, limit=size)
        total = await self._repo.count_by_user(user_id, status)
        return BookingPage(items=items, total=total, page=page, size=size)

    async def delete_booking(self, booking_id: str, actor_id: str) -> None:
        """
        Deletes a finished booking on behalf of its customer.

        Raises:
            NotFound, Unauthorized, Conflict (booking still active)
        """
        booking = await self.get_booking(booking_id)
        if booking.customer_id != actor_id:
            raise Unauthorized("Only the customer can delete a booking", booking_id=booking_id)
        if not await self._repo.delete_terminal(booking_id):
            raise Conflict("Only completed or cancelled bookings can be deleted", booking_id=booking_id)
        await log_info(f"Booking {booking_id} deleted by customer", type_msg=TypeMsg.INFO)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def request_transition(
        self,
        booking_id: str,
        actor_id: str,
        target_status: BookingStatus,
        timestamp: Optional[datetime] = None,
        actor_role: Optional[ActorRole] = None,
    ) -> Booking:
        """
        Validates and applies a status change.

        Args:
            booking_id: Booking id
            actor_id: Customer or driver id (or a system marker)
            target_status: Requested status (REJECTED keeps the booking PENDING)
            timestamp: Transition time, now when omitted
            actor_role: Forces the role (system cancellations)

        Returns:
            The booking after the change

        Raises:
            NotFound, Unauthorized, InvalidTransition, Conflict
        """
        booking = await self.get_booking(booking_id)

        if target_status == BookingStatus.CANCELLED and booking.status == BookingStatus.CANCELLED:
            return booking

        plan = self._state_machine.plan(
            booking,
            actor_id,
            target_status,
            timestamp or self._clock(),
            actor_role=actor_role,
        )

        if plan.needs_eligibility:
            await self._ensure_eligible(booking_id, actor_id)

        updated = await self._repo.conditional_transition(
            booking_id,
            plan.expected_status,
            plan.new_status,
            require_unassigned=plan.require_unassigned,
            **plan.fields,
        )
        if updated is None:
            return await self._resolve_lost_race(booking_id, plan)

        await self._after_commit(updated, actor_id, plan)
        return updated

    async def accept(self, booking_id: str, driver_id: str) -> Booking:
        return await self.request_transition(booking_id, driver_id, BookingStatus.ACCEPTED)

    async def reject(self, booking_id: str, driver_id: str) -> Booking:
        return await self.request_transition(booking_id, driver_id, BookingStatus.REJECTED)

    async def cancel(self, booking_id: str, actor_id: str) -> Booking:
        return await self.request_transition(booking_id, actor_id, BookingStatus.CANCELLED)

    async def start_trip(self, booking_id: str, driver_id: str) -> Booking:
        return await self.request_transition(booking_id, driver_id, BookingStatus.ONGOING)

    async def cancel_by_system(self, booking_id: str) -> Booking:
        """Cancels a booking nobody picked up."""
        return await self.request_transition(
            booking_id,
            ActorRole.SYSTEM.value,
            BookingStatus.CANCELLED,
            actor_role=ActorRole.SYSTEM,
        )

    async def complete_from_trip(
        self,
        booking_id: str,
        completed_at: Optional[datetime] = None,
    ) -> Booking:
        """Completion reported by the trip service on behalf of the assigned driver."""
        booking = await self.get_booking(booking_id)
        if booking.status == BookingStatus.COMPLETED:
            return booking
        if booking.driver_id is None:
            raise Conflict("Booking has no assigned driver", booking_id=booking_id)
        return await self.request_transition(
            booking_id,
            booking.driver_id,
            BookingStatus.COMPLETED,
            timestamp=completed_at,
        )

    async def _ensure_eligible(self, booking_id: str, driver_id: str) -> None:
        if await self._eligibility.is_eligible(booking_id, driver_id):
            return
        # a revoked set usually means someone else already won
        current = await self.get_booking(booking_id)
        if current.status != BookingStatus.PENDING:
            raise Conflict("Booking already handled", booking_id=booking_id, status=current.status.value)
        raise Unauthorized(
            "Driver is not eligible for this booking",
            booking_id=booking_id,
            driver_id=driver_id,
        )

    async def _resolve_lost_race(self, booking_id: str, plan: TransitionPlan) -> Booking:
        current = await self.get_booking(booking_id)
        if plan.requested == BookingStatus.CANCELLED and current.status == BookingStatus.CANCELLED:
            return current
        await log_info(
            f"Booking {booking_id}: {plan.requested.value} lost the race, status is {current.status.value}",
            type_msg=TypeMsg.DEBUG,
        )
        raise Conflict("Booking already handled", booking_id=booking_id, status=current.status.value)

    async def _after_commit(self, booking: Booking, actor_id: str, plan: TransitionPlan) -> None:
        payload: dict[str, Any] = {
            "booking_id": booking.id,
            "customer_id": booking.customer_id,
            "driver_id": booking.driver_id,
            "status": booking.status.value,
        }

        match plan.requested:
            case BookingStatus.ACCEPTED:
                eligible = await self._eligibility.revoke_all(booking.id)
                payload["accepted_at"] = booking.accepted_at.isoformat() if booking.accepted_at else None
                payload["eligible_driver_ids"] = eligible
            case BookingStatus.REJECTED:
                await self._rejections.add(booking.id, actor_id)
                payload["driver_id"] = actor_id
                payload["rejected_at"] = booking.rejected_at.isoformat() if booking.rejected_at else None
            case BookingStatus.CANCELLED:
                await self._eligibility.revoke_all(booking.id)
                await self._rejections.clear(booking.id)
                payload["previous_status"] = plan.expected_status.value
                payload["cancelled_by"] = plan.role.value
                payload["cancelled_at"] = booking.cancelled_at.isoformat() if booking.cancelled_at else None
            case BookingStatus.ONGOING:
                payload["started_at"] = booking.started_at.isoformat() if booking.started_at else None
            case BookingStatus.COMPLETED:
                payload["completed_at"] = booking.completed_at.isoformat() if booking.completed_at else None

        await self._publish(_STATUS_EVENTS[plan.requested], payload)
        await log_info(
            f"Booking {booking.id}: {plan.expected_status.value} -> {plan.requested.value} by {plan.role.value} {actor_id}",
            type_msg=TypeMsg.INFO,
        )

    # =========================================================================
    # QUERIES FOR THE MATCHER
    # =========================================================================

    async def drivers_with_active_booking(self, driver_ids: list[str]) -> list[str]:
        """Drivers from the list currently busy with an accepted or ongoing booking."""
        return await self._repo.get_drivers_with_active_booking(driver_ids)

    async def cancelled_bookings(self, customer_id: str, days_back: int) -> list[CancelledBookingDTO]:
        since = self._clock() - timedelta(days=days_back)
        return await self._repo.get_cancelled_by_customer(customer_id, since)

    async def booking_history(self, customer_id: str, days_back: int, limit: int) -> list[BookingHistoryDTO]:
        since = self._clock() - timedelta(days=days_back)
        return await self._repo.get_history_by_customer(customer_id, since, limit)

    async def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
