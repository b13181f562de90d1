# tests/conftest.py
"""
Shared fixtures and in-memory fakes.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Type
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.common.constants import ACTIVE_BOOKING_STATUSES, TERMINAL_BOOKING_STATUSES, ActorRole, BookingStatus
from src.core.bookings.models import Booking, BookingHistoryDTO, CancelledBookingDTO, Location
from src.core.bookings.repository import TRANSITION_FIELDS
from src.core.bookings.service import BookingService
from src.core.eligibility.store import EligibilityStore, RejectionStore
from src.infra.event_bus import DomainEvent


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    return project_root / "config" / "config.json"


# =============================================================================
# FAKES
# =============================================================================

class FakeRedis:
    """
    Dict-backed stand-in for RedisClient with a manual clock for TTLs.
    Keys are stored without the namespace prefix.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._data: dict[str, Any] = {}
        self._expires: dict[str, float] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _alive(self, key: str) -> bool:
        expires = self._expires.get(key)
        if expires is not None and expires <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return key in self._data

    def _set_ttl(self, key: str, ttl: Optional[int]) -> None:
        if ttl is None:
            self._expires.pop(key, None)
        else:
            self._expires[key] = self.now + ttl

    async def get(self, key: str) -> Optional[str]:
        return self._data[key] if self._alive(key) else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        if nx and self._alive(key):
            return False
        self._data[key] = value
        self._set_ttl(key, ttl)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def expire(self, key: str, ttl: int) -> bool:
        if not self._alive(key):
            return False
        self._set_ttl(key, ttl)
        return True

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        expires = self._expires.get(key)
        return -1 if expires is None else int(expires - self.now)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        if self._alive(key) and self._data[key] == value:
            await self.delete(key)
            return True
        return False

    async def get_model(self, key: str, model_class: Type[BaseModel]) -> Optional[BaseModel]:
        data = await self.get(key)
        return model_class.model_validate_json(data) if data is not None else None

    async def set_model(self, key: str, model: BaseModel, ttl: Optional[int] = None) -> bool:
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    async def get_json(self, key: str) -> Any:
        data = await self.get(key)
        return json.loads(data) if data is not None else None

    async def set_json(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(data, default=str), ttl=ttl)

    def _set_of(self, key: str) -> set[str]:
        if not self._alive(key):
            self._data[key] = set()
        return self._data[key]

    async def sadd(self, key: str, *members: str) -> int:
        target = self._set_of(key)
        before = len(target)
        target.update(members)
        return len(target) - before

    async def sadd_with_ttl(self, key: str, members: list[str], ttl: int) -> int:
        if not members:
            return 0
        added = await self.sadd(key, *members)
        self._set_ttl(key, ttl)
        return added

    async def srem(self, key: str, *members: str) -> int:
        if not self._alive(key):
            return 0
        target = self._data[key]
        removed = len(target & set(members))
        target.difference_update(members)
        if not target:
            await self.delete(key)
        return removed

    async def sismember(self, key: str, member: str) -> bool:
        return self._alive(key) and member in self._data[key]

    async def smembers(self, key: str) -> set[str]:
        return set(self._data[key]) if self._alive(key) else set()

    async def spop_all(self, key: str) -> set[str]:
        members = await self.smembers(key)
        await self.delete(key)
        return members

    async def health_check(self) -> bool:
        return True


class InMemoryBookingRepository:
    """BookingRepository over a dict; the compare-and-set has no await inside."""

    def __init__(self) -> None:
        self.rows: dict[str, Booking] = {}

    async def create(self, booking: Booking) -> Booking:
        self.rows[booking.id] = booking.model_copy()
        return booking.model_copy()

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        booking = self.rows.get(booking_id)
        return booking.model_copy() if booking else None

    async def get_active_by_customer(self, customer_id: str) -> Optional[Booking]:
        active = [
            b for b in self.rows.values()
            if b.customer_id == customer_id and b.status in ACTIVE_BOOKING_STATUSES
        ]
        return max(active, key=lambda b: b.created_at).model_copy() if active else None

    async def conditional_transition(
        self,
        booking_id: str,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        *,
        require_unassigned: bool = False,
        **fields: Any,
    ) -> Optional[Booking]:
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")
        booking = self.rows.get(booking_id)
        if booking is None or booking.status != expected_status:
            return None
        if require_unassigned and booking.driver_id is not None:
            return None
        updated = booking.model_copy(update={"status": new_status, **fields})
        self.rows[booking_id] = updated
        return updated.model_copy()

    def _by_user(self, user_id: str, status: Optional[BookingStatus]) -> list[Booking]:
        found = [
            b for b in self.rows.values()
            if (b.customer_id == user_id or b.driver_id == user_id) and (status is None or b.status == status)
        ]
        return sorted(found, key=lambda b: b.created_at, reverse=True)

    async def list_by_user(self, user_id: str, status=None, offset: int = 0, limit: int = 10) -> list[Booking]:
        return self._by_user(user_id, status)[offset:offset + limit]

    async def count_by_user(self, user_id: str, status=None) -> int:
        return len(self._by_user(user_id, status))

    async def delete_terminal(self, booking_id: str) -> bool:
        booking = self.rows.get(booking_id)
        if booking is None or booking.status not in TERMINAL_BOOKING_STATUSES:
            return False
        del self.rows[booking_id]
        return True

    async def get_drivers_with_active_booking(self, driver_ids: list[str]) -> list[str]:
        return sorted({
            b.driver_id for b in self.rows.values()
            if b.driver_id in driver_ids and b.status in (BookingStatus.ACCEPTED, BookingStatus.ONGOING)
        })

    async def get_cancelled_by_customer(self, customer_id: str, since: datetime) -> list[CancelledBookingDTO]:
        return [
            CancelledBookingDTO(
                id=b.id,
                customer_id=b.customer_id,
                driver_id=b.driver_id,
                cancelled_by=b.cancelled_by,
                cancelled_at=b.cancelled_at,
            )
            for b in self.rows.values()
            if b.customer_id == customer_id
            and b.status == BookingStatus.CANCELLED
            and b.cancelled_at is not None
            and b.cancelled_at >= since
        ]

    async def get_history_by_customer(self, customer_id: str, since: datetime, limit: int) -> list[BookingHistoryDTO]:
        rows = [
            b for b in self.rows.values()
            if b.customer_id == customer_id and b.status == BookingStatus.COMPLETED and b.created_at >= since
        ]
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return [
            BookingHistoryDTO(
                id=b.id,
                customer_id=b.customer_id,
                driver_id=b.driver_id,
                status=b.status,
                created_at=b.created_at,
            )
            for b in rows[:limit]
        ]


class RecordingEventBus:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []
        self.subscriptions: list[str] = []
        self.is_connected = True

    async def publish(self, event: DomainEvent) -> bool:
        self.events.append(event)
        return True

    async def subscribe(self, event_type: str, handler, queue_name: Optional[str] = None) -> None:
        self.subscriptions.append(event_type)

    def of_type(self, event_type: str) -> list[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


# =============================================================================
# INFRASTRUCTURE FIXTURES
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.subscribe = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def booking_repo() -> InMemoryBookingRepository:
    return InMemoryBookingRepository()


@pytest.fixture
def eligibility(fake_redis: FakeRedis) -> EligibilityStore:
    return EligibilityStore(fake_redis)


@pytest.fixture
def rejections(fake_redis: FakeRedis) -> RejectionStore:
    return RejectionStore(fake_redis)


@pytest.fixture
def booking_service(
    booking_repo: InMemoryBookingRepository,
    eligibility: EligibilityStore,
    rejections: RejectionStore,
    event_bus: RecordingEventBus,
) -> BookingService:
    return BookingService(booking_repo, eligibility, rejections, event_bus)


# =============================================================================
# SAMPLE DATA
# =============================================================================

JAKARTA = (-6.2088, 106.8456)


@pytest.fixture
def pickup() -> Location:
    return Location(latitude=JAKARTA[0], longitude=JAKARTA[1], address="Jl. M.H. Thamrin")


@pytest.fixture
def destination() -> Location:
    return Location(latitude=-6.1751, longitude=106.8650, address="Monas")


@pytest.fixture
def make_booking(pickup: Location, destination: Location):
    """Builds a Booking with overrides."""
    def _make(**overrides: Any) -> Booking:
        data: dict[str, Any] = {
            "customer_id": "cust-1",
            "pickup": pickup,
            "destination": destination,
            "created_at": datetime.now(timezone.utc) - timedelta(minutes=1),
        }
        data.update(overrides)
        return Booking(**data)
    return _make


@pytest.fixture
def booking_row():
    """DB row dict for a booking, as asyncpg would return it."""
    def _row(booking: Booking) -> dict[str, Any]:
        cancelled_by = booking.cancelled_by
        return {
            "id": booking.id,
            "customer_id": booking.customer_id,
            "driver_id": booking.driver_id,
            "pickup_latitude": booking.pickup.latitude,
            "pickup_longitude": booking.pickup.longitude,
            "pickup_address": booking.pickup.address,
            "destination_latitude": booking.destination.latitude,
            "destination_longitude": booking.destination.longitude,
            "destination_address": booking.destination.address,
            "status": booking.status.value,
            "cancelled_by": cancelled_by.value if isinstance(cancelled_by, ActorRole) else cancelled_by,
            "created_at": booking.created_at,
            "updated_at": booking.updated_at,
            "accepted_at": booking.accepted_at,
            "rejected_at": booking.rejected_at,
            "cancelled_at": booking.cancelled_at,
            "started_at": booking.started_at,
            "completed_at": booking.completed_at,
        }
    return _row
