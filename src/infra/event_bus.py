# src/infra/event_bus.py
"""
RabbitMQ event bus.
Booking lifecycle events travel over a topic exchange; routing key = event type.
Delivery is at-least-once, so every consumer must be idempotent.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Awaitable
from uuid import uuid4

import aio_pika
from aio_pika import Message, ExchangeType
from aio_pika.abc import AbstractConnection, AbstractChannel, AbstractExchange, AbstractQueue

from src.common.logger import get_logger, log_error, log_info
from src.common.constants import TypeMsg

logger = get_logger("event_bus")


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# DOMAIN EVENTS
# =============================================================================

@dataclass
class DomainEvent:
    """Envelope for every event on the bus."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    event_type: str = ""
    timestamp: str = field(default_factory=utc_now_iso)
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def booking_id(self) -> str | None:
        """Booking the event refers to, when present."""
        return self.payload.get("booking_id")

    def to_json(self) -> str:
        """Serializes the event to JSON."""
        return json.dumps({
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, data: str) -> DomainEvent:
        """Parses an event from JSON."""
        parsed = json.loads(data)
        return cls(
            event_id=parsed.get("event_id", str(uuid4())),
            event_type=parsed.get("event_type", ""),
            timestamp=parsed.get("timestamp", ""),
            payload=parsed.get("payload", {}),
        )


class EventTypes:
    """Booking event names."""
    BOOKING_CREATED = "booking.created"
    DRIVER_SEARCH_REQUESTED = "booking.driver_search_requested"
    NEARBY_DRIVERS_FOUND = "booking.nearby_drivers_found"
    DRIVERS_READY = "booking.drivers_ready"
    BOOKING_ACCEPTED = "booking.accepted"
    BOOKING_REJECTED = "booking.rejected"
    BOOKING_TAKEN = "booking.taken"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_ONGOING = "booking.ongoing"
    BOOKING_COMPLETED = "booking.completed"
    NO_DRIVERS_AVAILABLE = "booking.no_drivers_available"


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """
    RabbitMQ-backed event bus.

    Provides:
    - publishing to a topic exchange
    - durable per-event-type queues shared by worker instances
    - robust reconnects (aio_pika connect_robust)
    """

    _instance: EventBus | None = None
    _connection: AbstractConnection | None = None
    _channel: AbstractChannel | None = None
    _exchange: AbstractExchange | None = None
    _handlers: dict[str, list[EventHandler]]

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection = None
        self._channel = None
        self._exchange = None
        self._handlers = {}
        self._exchange_name = "dispatch.events"
        self._queues: dict[str, AbstractQueue] = {}

    @property
    def is_connected(self) -> bool:
        """True while the connection is open."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str | None = None,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
    ) -> None:
        """
        Connects to RabbitMQ and declares the exchange.

        Args:
            url: AMQP URL (taken from config when None)
            exchange_name: Exchange name
            prefetch_count: Channel prefetch
        """
        if self.is_connected:
            return

        if url is None:
            from src.config import settings
            url = settings.rabbitmq.url
            exchange_name = settings.rabbitmq.RABBITMQ_EXCHANGE
            prefetch_count = settings.rabbitmq.RABBITMQ_PREFETCH_COUNT

        if exchange_name:
            self._exchange_name = exchange_name

        await log_info("Connecting to RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)

        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("RabbitMQ connection established", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Closes the RabbitMQ connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            self._queues = {}
            await log_info("RabbitMQ connection closed", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> bool:
        """
        Publishes an event.

        Args:
            event: Domain event

        Returns:
            True if the broker took the message
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"Cannot publish {event.event_type}: RabbitMQ is not connected")
            return False

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            )

            await self._exchange.publish(
                message,
                routing_key=event.event_type,
            )

            await log_info(
                f"Event published: {event.event_type}",
                type_msg=TypeMsg.DEBUG,
                extra={"event_id": event.event_id, "booking_id": event.booking_id},
            )
            return True
        except Exception as e:
            await log_error(f"Failed to publish {event.event_type}: {e}")
            return False

    async def subscribe(
        self,
        event_type: str,
        handler: EventHandler,
        queue_name: str | None = None,
    ) -> None:
        """
        Subscribes a handler to one event type.

        Args:
            event_type: Routing key pattern
            handler: Async handler
            queue_name: Queue name (derived from the event type when None)
        """
        if not self.is_connected or self._channel is None or self._exchange is None:
            await log_error(f"Cannot subscribe to {event_type}: RabbitMQ is not connected")
            return

        self._handlers.setdefault(event_type, []).append(handler)

        if queue_name is None:
            queue_name = f"dispatch.{event_type.replace('.', '_')}"

        if queue_name not in self._queues:
            queue = await self._channel.declare_queue(queue_name, durable=True)
            await queue.bind(self._exchange, routing_key=event_type)
            self._queues[queue_name] = queue
            await queue.consume(self._make_consumer(event_type))

        await log_info(f"Subscribed to {event_type}", type_msg=TypeMsg.DEBUG)

    def _make_consumer(self, event_type: str) -> Callable:
        """Builds the queue consumer that fans a message out to handlers."""
        async def consumer(message: aio_pika.abc.AbstractIncomingMessage) -> None:
            async with message.process():
                try:
                    event = DomainEvent.from_json(message.body.decode())
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    await log_error(f"Dropping malformed message on {event_type}: {e}")
                    return

                for handler in self._handlers.get(event_type, []):
                    try:
                        await handler(event)
                    except Exception as e:
                        await log_error(
                            f"Handler {getattr(handler, '__name__', handler)} failed for {event_type}: {e}",
                            extra={"event_id": event.event_id, "booking_id": event.booking_id},
                            exc_info=True,
                        )

        return consumer

    async def health_check(self) -> bool:
        """True while connected."""
        return self.is_connected


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Returns the global EventBus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> None:
    """Connects the global EventBus using configuration."""
    from src.config import settings

    event_bus = get_event_bus()
    await event_bus.connect(
        url=settings.rabbitmq.url,
        exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
        prefetch_count=settings.rabbitmq.RABBITMQ_PREFETCH_COUNT,
    )
    await log_info(
        f"RabbitMQ connected: {settings.rabbitmq.RABBITMQ_HOST}:{settings.rabbitmq.RABBITMQ_PORT}",
        type_msg=TypeMsg.INFO,
    )


async def close_event_bus() -> None:
    """Closes the global RabbitMQ connection."""
    event_bus = get_event_bus()
    await event_bus.disconnect()
    await log_info("RabbitMQ disconnected", type_msg=TypeMsg.INFO)
