# src/worker/dispatch.py
"""
Dispatch worker.
Feeds booking events into the dispatch saga and periodically sweeps stalled
searches and expired acceptance windows.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.dispatch.saga import DispatchSaga
from src.core.eligibility.store import EligibilityStore, RejectionStore
from src.core.matching.service import DriverMatcher
from src.core.resilience.caller import get_resilient_caller
from src.infra.collaborators import BookingQueryClient, DriverDirectoryClient, NotificationClient
from src.infra.event_bus import DomainEvent, EventHandler
from src.infra.locks import DistributedLock, LockNotAcquired
from src.worker.base import BaseWorker


class DispatchWorker(BaseWorker):
    """
    Runs saga handlers at most once per delivered event id, one booking and
    event type at a time across worker instances.
    """

    def __init__(self, saga: Optional[DispatchSaga] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        from src.config import settings

        self._processed_ttl = settings.redis_ttl.PROCESSED_EVENT_TTL
        self._lock_ttl = settings.redis_ttl.SAGA_LOCK_TTL
        self._sweep_interval = settings.timeouts.SWEEP_INTERVAL
        self._clients: list = []
        self.saga = saga or self._build_saga()
        self._handlers: dict[str, EventHandler] = self.saga.handlers()

    def _build_saga(self) -> DispatchSaga:
        caller = get_resilient_caller()
        eligibility = EligibilityStore(self.redis)
        rejections = RejectionStore(self.redis)
        bookings = BookingService(BookingRepository(self.db), eligibility, rejections, self.event_bus)

        drivers = DriverDirectoryClient()
        booking_queries = BookingQueryClient()
        notifications = NotificationClient()
        self._clients = [drivers, booking_queries, notifications]

        matcher = DriverMatcher(drivers, booking_queries, rejections, self.redis, caller)
        return DispatchSaga(
            bookings=bookings,
            matcher=matcher,
            eligibility=eligibility,
            rejections=rejections,
            notifications=notifications,
            caller=caller,
            event_bus=self.event_bus,
            redis=self.redis,
        )

    @property
    def name(self) -> str:
        return "DispatchWorker"

    @property
    def subscriptions(self) -> List[str]:
        return list(self._handlers)

    async def start(self) -> None:
        was_running = self._running
        await super().start()
        if not was_running:
            self._tasks.append(asyncio.create_task(self._sweep_loop()))

    async def stop(self) -> None:
        await super().stop()
        for client in self._clients:
            await client.close()
        self._clients = []

    async def handle_event(self, event: DomainEvent) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            return

        booking_id = event.booking_id
        if not booking_id:
            await log_warning(f"{event.event_type} without booking_id dropped", extra={"event_id": event.event_id})
            return

        processed_key = f"event:processed:{event.event_id}"
        lock = DistributedLock(self.redis, f"saga:{booking_id}:{event.event_type}", ttl_seconds=self._lock_ttl)
        try:
            async with lock:
                if await self.redis.exists(processed_key):
                    await log_info(f"Duplicate {event.event_type} {event.event_id} skipped", type_msg=TypeMsg.DEBUG)
                    return
                await handler(event)
                await self.redis.set(processed_key, "1", ttl=self._processed_ttl)
        except LockNotAcquired:
            await log_warning(
                f"{event.event_type} for booking {booking_id} skipped, lock busy",
                extra={"event_id": event.event_id},
            )

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._sweep_interval)
                handled = await self.saga.sweep()
                if handled:
                    await log_info(f"Stalled searches and expired windows handled: {handled}", type_msg=TypeMsg.INFO)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Dispatch sweep failed: {e}", exc_info=True)
