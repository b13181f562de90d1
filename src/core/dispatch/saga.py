# src/core/dispatch/saga.py
"""
Dispatch saga.

Event-driven orchestration of one booking: search -> broadcast -> accept race
-> settle, with bounded re-matching when every driver declines or the
acceptance window lapses. Handlers are registered explicitly via handlers().
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from src.common.constants import ActorRole, BookingStatus, SagaPhase, TypeMsg
from src.common.errors import DispatchError, DownstreamUnavailable, NotFound
from src.common.logger import log_error, log_info, log_warning
from src.core.bookings.models import Booking, Location, utc_now
from src.core.bookings.service import BookingService
from src.core.dispatch.models import DispatchSagaState
from src.core.eligibility.store import EligibilityStore, RejectionStore
from src.core.matching.models import MatchRequest
from src.core.matching.service import DriverMatcher
from src.core.resilience.caller import ResilientCaller
from src.infra.collaborators import NotificationClient
from src.infra.event_bus import DomainEvent, EventBus, EventHandler, EventTypes
from src.infra.locks import DistributedLock, LockNotAcquired
from src.infra.redis_client import RedisClient

NOTIFICATION_GATEWAY = "notification-gateway"
AWAITING_INDEX_KEY = "saga:awaiting"
SEARCHING_INDEX_KEY = "saga:searching"


class DispatchSaga:
    """Coordinates matching, eligibility, notifications and booking transitions."""

    def __init__(
        self,
        bookings: BookingService,
        matcher: DriverMatcher,
        eligibility: EligibilityStore,
        rejections: RejectionStore,
        notifications: NotificationClient,
        caller: ResilientCaller,
        event_bus: EventBus,
        redis: RedisClient,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        from src.config import settings

        self._bookings = bookings
        self._matcher = matcher
        self._eligibility = eligibility
        self._rejections = rejections
        self._notifications = notifications
        self._caller = caller
        self._event_bus = event_bus
        self._redis = redis
        self._clock = clock

        self._min_radius = settings.search.SEARCH_RADIUS_MIN_KM
        self._max_radius = settings.search.SEARCH_RADIUS_MAX_KM
        self._radius_step = settings.search.SEARCH_RADIUS_STEP_KM
        self._max_attempts = settings.search.MAX_SEARCH_RETRIES
        self._auto_cancel = settings.search.AUTO_CANCEL_ON_NO_DRIVERS
        self._state_ttl = settings.redis_ttl.SAGA_STATE_TTL
        self._ready_ttl = settings.redis_ttl.DRIVERS_READY_TTL
        self._lock_ttl = settings.redis_ttl.SAGA_LOCK_TTL
        self._stall_timeout = settings.timeouts.SEARCH_STALL_TIMEOUT

    def handlers(self) -> dict[str, EventHandler]:
        """Event type -> handler map registered by the dispatch worker."""
        return {
            EventTypes.BOOKING_CREATED: self.on_booking_created,
            EventTypes.DRIVER_SEARCH_REQUESTED: self.on_driver_search_requested,
            EventTypes.DRIVERS_READY: self.on_drivers_ready,
            EventTypes.BOOKING_ACCEPTED: self.on_booking_accepted,
            EventTypes.BOOKING_REJECTED: self.on_booking_rejected,
            EventTypes.BOOKING_CANCELLED: self.on_booking_cancelled,
        }

    # =========================================================================
    # STATE
    # =========================================================================

    @staticmethod
    def _state_key(booking_id: str) -> str:
        return f"saga:{booking_id}"

    async def load_state(self, booking_id: str) -> Optional[DispatchSagaState]:
        return await self._redis.get_model(self._state_key(booking_id), DispatchSagaState)

    async def _save_state(self, state: DispatchSagaState) -> None:
        state.updated_at = self._clock()
        await self._redis.set_model(self._state_key(state.booking_id), state, ttl=self._state_ttl)
        for phase, index_key in (
            (SagaPhase.AWAITING_ACCEPTANCE, AWAITING_INDEX_KEY),
            (SagaPhase.SEARCHING, SEARCHING_INDEX_KEY),
        ):
            if state.phase == phase:
                await self._redis.sadd(index_key, state.booking_id)
            else:
                await self._redis.srem(index_key, state.booking_id)

    def _saga_lock(self, booking_id: str) -> DistributedLock:
        """Serializes every state change of one saga that races a cancellation."""
        return DistributedLock(self._redis, f"saga:{booking_id}:dispatch", ttl_seconds=self._lock_ttl)

    async def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def on_booking_created(self, event: DomainEvent) -> None:
        """Opens the saga and asks for the first driver search."""
        payload = event.payload
        booking_id = payload["booking_id"]
        if await self.load_state(booking_id) is not None:
            return

        state = DispatchSagaState(
            booking_id=booking_id,
            customer_id=payload["customer_id"],
            pickup=Location.model_validate(payload["pickup"]),
            destination=Location.model_validate(payload["destination"]) if payload.get("destination") else None,
            search_radius_km=self._min_radius,
        )
        await self._save_state(state)
        await self._request_search(state)

    async def on_driver_search_requested(self, event: DomainEvent) -> None:
        """Runs the matcher and opens the eligibility window for the candidates."""
        payload = event.payload
        state = await self.load_state(payload["booking_id"])
        if state is None:
            await log_warning(f"Search requested for unknown saga {payload['booking_id']}")
            return
        if state.phase != SagaPhase.SEARCHING or payload.get("attempt", 1) != state.attempt:
            return

        if await self._pending_booking(state.booking_id) is None:
            return

        result = await self._matcher.find_candidates(MatchRequest(
            latitude=state.pickup.latitude,
            longitude=state.pickup.longitude,
            radius_km=state.search_radius_km,
            customer_id=state.customer_id,
            booking_id=state.booking_id,
        ))

        attempt = state.attempt
        try:
            async with self._saga_lock(state.booking_id):
                # the booking may have been cancelled while the matcher ran
                state = await self.load_state(state.booking_id)
                if state is None or state.phase != SagaPhase.SEARCHING or state.attempt != attempt:
                    return
                if await self._pending_booking(state.booking_id) is None:
                    return

                if not result.success or not result.candidates:
                    await self._publish(EventTypes.NEARBY_DRIVERS_FOUND, self._found_payload(state, [], result.message))
                    await self._give_up(state, result.message)
                    return

                driver_ids = result.driver_ids
                await self._eligibility.grant(state.booking_id, driver_ids)
                await self._eligibility.mark_ready(state.booking_id)

                state.phase = SagaPhase.AWAITING_ACCEPTANCE
                state.notified_driver_ids = driver_ids
                state.rejected_driver_ids = []
                await self._save_state(state)

                drivers = [c.to_dict() for c in result.candidates]
                now = self._clock()
                await self._publish(EventTypes.NEARBY_DRIVERS_FOUND, self._found_payload(state, drivers, result.message))
                await self._publish(EventTypes.DRIVERS_READY, {
                    "booking_id": state.booking_id,
                    "customer_id": state.customer_id,
                    "pickup": state.pickup.model_dump(),
                    "destination": state.destination.model_dump() if state.destination else None,
                    "driver_ids": driver_ids,
                    "drivers": drivers,
                    "attempt": state.attempt,
                    "created_at": now.isoformat(),
                    "expires_at": (now + timedelta(seconds=self._ready_ttl)).isoformat(),
                })
        except LockNotAcquired:
            # the stalled-search sweep asks again
            await log_warning(f"Search result for booking {payload['booking_id']} dropped, saga lock busy")
            return

        await log_info(
            f"Booking {state.booking_id}: {len(driver_ids)} drivers eligible (attempt {state.attempt})",
            type_msg=TypeMsg.INFO,
        )

    async def on_drivers_ready(self, event: DomainEvent) -> None:
        """Pushes the booking request to every eligible driver and tells the customer."""
        payload = event.payload
        state = await self.load_state(payload["booking_id"])
        if state is None or state.phase != SagaPhase.AWAITING_ACCEPTANCE:
            return
        if payload.get("attempt", 1) != state.attempt:
            return

        driver_ids = await self._eligibility.list(state.booking_id)
        request = {
            "booking_id": state.booking_id,
            "customer_id": state.customer_id,
            "pickup": payload.get("pickup"),
            "destination": payload.get("destination"),
            "expires_at": payload.get("expires_at"),
        }
        drivers = {d["driver_id"]: d for d in payload.get("drivers", [])}
        results = await asyncio.gather(*(
            self._notify_driver(d, "booking.request", {**request, "distance_km": drivers.get(d, {}).get("distance_km")})
            for d in driver_ids
        ))
        await self._notify_customer(state.customer_id, "booking.broadcast", {
            "booking_id": state.booking_id,
            "drivers_notified": sum(1 for ok in results if ok),
        })

    async def on_booking_accepted(self, event: DomainEvent) -> None:
        """Settles the saga and tells the other drivers the booking is taken."""
        payload = event.payload
        booking_id = payload["booking_id"]
        winner = payload["driver_id"]
        state = await self.load_state(booking_id)
        if state is not None and state.phase == SagaPhase.SETTLED:
            return

        previously_eligible = set(payload.get("eligible_driver_ids") or [])
        if state is not None:
            previously_eligible |= set(state.notified_driver_ids)
        losers = sorted(previously_eligible - {winner})

        await self._eligibility.clear_ready(booking_id)
        if state is not None:
            state.phase = SagaPhase.SETTLED
            state.accepted_by = winner
            await self._save_state(state)

        if losers:
            await self._publish(EventTypes.BOOKING_TAKEN, {
                "booking_id": booking_id,
                "taken_by": winner,
                "driver_ids": losers,
            })
            await asyncio.gather(*(
                self._notify_driver(d, EventTypes.BOOKING_TAKEN, {"booking_id": booking_id})
                for d in losers
            ))

        await self._notify_customer(payload["customer_id"], "booking.driver_assigned", {
            "booking_id": booking_id,
            "driver_id": winner,
        })

    async def on_booking_rejected(self, event: DomainEvent) -> None:
        """Records the decline; re-matches once every notified driver declined."""
        payload = event.payload
        state = await self.load_state(payload["booking_id"])
        if state is None or state.phase != SagaPhase.AWAITING_ACCEPTANCE:
            return

        driver_id = payload["driver_id"]
        if driver_id not in state.rejected_driver_ids:
            state.rejected_driver_ids.append(driver_id)
            await self._save_state(state)

        if state.everyone_rejected:
            await self.rematch(state.booking_id, state.attempt, "every notified driver declined")

    async def on_booking_cancelled(self, event: DomainEvent) -> None:
        """Cleans up dispatch state and tells the other party."""
        payload = event.payload
        booking_id = payload["booking_id"]

        try:
            async with self._saga_lock(booking_id):
                await self._close_cancelled(booking_id)
        except LockNotAcquired:
            await log_warning(f"Cancellation of booking {booking_id} cleaned up without the saga lock")
            await self._close_cancelled(booking_id)

        cancelled_by = payload.get("cancelled_by")
        driver_id = payload.get("driver_id")
        notice = {"booking_id": booking_id, "cancelled_by": cancelled_by}
        if driver_id and cancelled_by != ActorRole.DRIVER.value:
            await self._notify_driver(driver_id, EventTypes.BOOKING_CANCELLED, notice)
        if cancelled_by == ActorRole.DRIVER.value:
            await self._notify_customer(payload["customer_id"], EventTypes.BOOKING_CANCELLED, notice)

    async def _close_cancelled(self, booking_id: str) -> None:
        await self._eligibility.revoke_all(booking_id)
        await self._rejections.clear(booking_id)
        await self._eligibility.clear_ready(booking_id)

        state = await self.load_state(booking_id)
        if state is not None and state.phase != SagaPhase.CANCELLED:
            state.phase = SagaPhase.CANCELLED
            await self._save_state(state)

    # =========================================================================
    # RE-MATCH / TIMEOUTS
    # =========================================================================

    async def sweep(self) -> int:
        """One pass of every periodic recovery. Returns bookings acted on."""
        return await self.sweep_stalled_searches() + await self.sweep_expired_windows()

    async def sweep_stalled_searches(self) -> int:
        """
        Asks again for searches that never produced a result.

        A search request can be lost (publish failure, failed or skipped
        handler); sagas idle in SEARCHING for longer than the stall timeout
        get their current attempt re-published. Sagas whose booking left
        PENDING are closed instead.

        Returns:
            Number of searches re-requested
        """
        handled = 0
        horizon = self._clock() - timedelta(seconds=self._stall_timeout)
        for booking_id in sorted(await self._redis.smembers(SEARCHING_INDEX_KEY)):
            state = await self.load_state(booking_id)
            if state is None or state.phase != SagaPhase.SEARCHING:
                await self._redis.srem(SEARCHING_INDEX_KEY, booking_id)
                continue
            if state.updated_at > horizon:
                continue
            try:
                if await self._retry_search(booking_id, state.attempt):
                    handled += 1
            except Exception as e:
                await log_error(f"Search retry failed for booking {booking_id}: {e}", exc_info=True)
        return handled

    async def _retry_search(self, booking_id: str, expected_attempt: int) -> bool:
        try:
            async with self._saga_lock(booking_id):
                state = await self.load_state(booking_id)
                if state is None or state.phase != SagaPhase.SEARCHING or state.attempt != expected_attempt:
                    return False
                if await self._pending_booking(booking_id) is None:
                    state.phase = SagaPhase.CANCELLED
                    await self._save_state(state)
                    return False
                # restarts the stall clock
                await self._save_state(state)
        except LockNotAcquired:
            return False

        await log_warning(f"Booking {booking_id}: search attempt {state.attempt} stalled, requesting it again")
        await self._request_search(state)
        return True

    async def sweep_expired_windows(self) -> int:
        """
        Re-matches bookings whose acceptance window lapsed without an accept.

        Returns:
            Number of bookings re-matched or given up on
        """
        handled = 0
        for booking_id in sorted(await self._redis.smembers(AWAITING_INDEX_KEY)):
            state = await self.load_state(booking_id)
            if state is None or state.phase != SagaPhase.AWAITING_ACCEPTANCE:
                await self._redis.srem(AWAITING_INDEX_KEY, booking_id)
                continue
            if await self._eligibility.is_ready_fresh(booking_id):
                continue
            try:
                if await self.rematch(booking_id, state.attempt, "acceptance window expired"):
                    handled += 1
            except Exception as e:
                await log_error(f"Sweep failed for booking {booking_id}: {e}", exc_info=True)
        return handled

    async def rematch(self, booking_id: str, expected_attempt: int, reason: str) -> bool:
        """
        Starts the next search round with a wider radius, or gives up after
        the last allowed attempt.

        Returns:
            False when another actor already moved the saga on
        """
        try:
            async with self._saga_lock(booking_id):
                state = await self.load_state(booking_id)
                if (
                    state is None
                    or state.phase != SagaPhase.AWAITING_ACCEPTANCE
                    or state.attempt != expected_attempt
                ):
                    return False

                if await self._pending_booking(booking_id) is None:
                    return False

                await self._eligibility.revoke_all(booking_id)
                await self._eligibility.clear_ready(booking_id)

                if state.attempt >= self._max_attempts:
                    await self._give_up(state, f"{reason}; no drivers after {state.attempt} attempts")
                    return True

                state.attempt += 1
                state.search_radius_km = min(state.search_radius_km + self._radius_step, self._max_radius)
                state.phase = SagaPhase.SEARCHING
                state.notified_driver_ids = []
                state.rejected_driver_ids = []
                await self._save_state(state)
        except LockNotAcquired:
            await log_warning(f"Re-match of booking {booking_id} skipped, another worker holds it")
            return False

        await log_info(
            f"Booking {booking_id}: re-matching ({reason}), attempt {state.attempt} within {state.search_radius_km} km",
            type_msg=TypeMsg.INFO,
        )
        await self._request_search(state)
        return True

    async def _request_search(self, state: DispatchSagaState) -> None:
        await self._publish(EventTypes.DRIVER_SEARCH_REQUESTED, {
            "booking_id": state.booking_id,
            "customer_id": state.customer_id,
            "pickup": state.pickup.model_dump(),
            "radius_km": state.search_radius_km,
            "attempt": state.attempt,
        })

    def _found_payload(self, state: DispatchSagaState, drivers: list[dict[str, Any]], message: str) -> dict[str, Any]:
        return {
            "booking_id": state.booking_id,
            "customer_id": state.customer_id,
            "drivers": drivers,
            "search_radius": state.search_radius_km,
            "message": message,
            "attempt": state.attempt,
            "found_at": self._clock().isoformat(),
        }

    async def _give_up(self, state: DispatchSagaState, reason: str) -> None:
        """No drivers: expire the saga, tell the customer, optionally cancel the booking."""
        state.phase = SagaPhase.EXPIRED
        await self._save_state(state)

        await self._publish(EventTypes.NO_DRIVERS_AVAILABLE, {
            "booking_id": state.booking_id,
            "customer_id": state.customer_id,
            "attempts": state.attempt,
            "reason": reason,
        })
        await self._notify_customer(state.customer_id, EventTypes.NO_DRIVERS_AVAILABLE, {
            "booking_id": state.booking_id,
            "message": reason,
        })
        await log_info(f"Booking {state.booking_id}: no drivers available ({reason})", type_msg=TypeMsg.WARNING)

        if not self._auto_cancel:
            return
        try:
            await self._bookings.cancel_by_system(state.booking_id)
        except DispatchError as e:
            # a driver may have accepted in the meantime
            await log_info(f"Auto-cancel of booking {state.booking_id} skipped: {e.message}", type_msg=TypeMsg.DEBUG)

    async def _pending_booking(self, booking_id: str) -> Optional[Booking]:
        try:
            booking = await self._bookings.get_booking(booking_id)
        except NotFound:
            return None
        return booking if booking.status == BookingStatus.PENDING else None

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def _notify_driver(self, driver_id: str, event: str, payload: dict[str, Any]) -> bool:
        return await self._send(self._notifications.notify_driver, driver_id, event, payload)

    async def _notify_customer(self, customer_id: str, event: str, payload: dict[str, Any]) -> bool:
        return await self._send(self._notifications.notify_customer, customer_id, event, payload)

    async def _send(
        self,
        fn: Callable[[str, str, dict[str, Any]], Awaitable[None]],
        recipient: str,
        event: str,
        payload: dict[str, Any],
    ) -> bool:
        try:
            await self._caller.call(NOTIFICATION_GATEWAY, fn, recipient, event, payload)
            return True
        except DownstreamUnavailable as e:
            await log_warning(
                f"Notification {event} to {recipient} not delivered: {e.reason}",
                extra={"booking_id": payload.get("booking_id")},
            )
            return False
