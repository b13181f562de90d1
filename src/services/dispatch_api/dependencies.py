# src/services/dispatch_api/dependencies.py
from fastapi import Request
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.eligibility.store import EligibilityStore, RejectionStore
from src.infra.database import get_db
from src.infra.redis_client import get_redis
from src.infra.event_bus import get_event_bus


def get_booking_repository(request: Request) -> BookingRepository:
    return BookingRepository(get_db())


def get_booking_service(request: Request) -> BookingService:
    repository = get_booking_repository(request)
    redis = get_redis()
    return BookingService(
        repository,
        EligibilityStore(redis),
        RejectionStore(redis),
        get_event_bus(),
    )
