# src/worker/base.py
"""
Base class for event-driven workers.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from src.infra.event_bus import EventBus, DomainEvent, get_event_bus
from src.infra.database import DatabaseManager, get_db
from src.infra.redis_client import RedisClient, get_redis
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Subscribes to a set of event types and handles them.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        db: Optional[DatabaseManager] = None,
        redis: Optional[RedisClient] = None,
    ) -> None:
        """
        Args:
            event_bus: Event bus
            db: Database manager
            redis: Redis client
        """
        self.event_bus = event_bus or get_event_bus()
        self.db = db or get_db()
        self.redis = redis or get_redis()
        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Worker name."""

    @property
    @abstractmethod
    def subscriptions(self) -> List[str]:
        """Event types to subscribe to."""

    @abstractmethod
    async def handle_event(self, event: DomainEvent) -> None:
        """Handles one event."""

    async def start(self) -> None:
        """Subscribes to every event type."""
        if self._running:
            return

        self._running = True
        await log_info(f"Worker {self.name} starting...", type_msg=TypeMsg.INFO)

        for event_type in self.subscriptions:
            await self.event_bus.subscribe(
                event_type=event_type,
                handler=self._on_event,
            )
            await log_info(f"Worker {self.name} subscribed to {event_type}", type_msg=TypeMsg.DEBUG)

        await log_info(f"Worker {self.name} started", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Cancels background tasks."""
        if not self._running:
            return

        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        await log_info(f"Worker {self.name} stopped", type_msg=TypeMsg.INFO)

    async def _on_event(self, event: DomainEvent) -> None:
        if not self._running:
            return

        try:
            await log_info(f"Worker {self.name} got {event.event_type}", type_msg=TypeMsg.DEBUG)
            await self.handle_event(event)
        except Exception as e:
            await log_error(
                f"Worker {self.name} failed on {event.event_type}: {e}",
                extra={"event_type": event.event_type, "payload": event.payload},
                exc_info=True,
            )
