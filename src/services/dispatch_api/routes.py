# src/services/dispatch_api/routes.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from src.common.constants import BookingStatus
from src.core.bookings.models import (
    Booking,
    BookingCreateDTO,
    BookingHistoryDTO,
    BookingPage,
    CancelledBookingDTO,
)
from src.core.bookings.service import BookingService
from src.services.dispatch_api.dependencies import get_booking_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


class ActorRequest(BaseModel):
    actor_id: str


class DriverRequest(BaseModel):
    driver_id: str


class CompleteRequest(BaseModel):
    completed_at: Optional[datetime] = None


class DriverAvailabilityRequest(BaseModel):
    driver_ids: list[str]


class DriverAvailability(BaseModel):
    driver_id: str
    is_available: bool


@router.post("", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateDTO,
    service: BookingService = Depends(get_booking_service)
):
    return await service.create_booking(request)


@router.post("/drivers/availability", response_model=list[DriverAvailability])
async def check_drivers_availability(
    request: DriverAvailabilityRequest,
    service: BookingService = Depends(get_booking_service)
):
    busy = set(await service.drivers_with_active_booking(request.driver_ids))
    return [
        DriverAvailability(driver_id=driver_id, is_available=driver_id not in busy)
        for driver_id in request.driver_ids
    ]


@router.get("/customers/{customer_id}/cancelled", response_model=list[CancelledBookingDTO])
async def get_customer_cancelled_bookings(
    customer_id: str,
    days_back: int = Query(30, ge=1),
    service: BookingService = Depends(get_booking_service)
):
    return await service.cancelled_bookings(customer_id, days_back)


@router.get("/customers/{customer_id}/history", response_model=list[BookingHistoryDTO])
async def get_customer_booking_history(
    customer_id: str,
    days_back: int = Query(90, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    service: BookingService = Depends(get_booking_service)
):
    return await service.booking_history(customer_id, days_back, limit)


@router.get("/users/{user_id}", response_model=BookingPage)
async def list_user_bookings(
    user_id: str,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    service: BookingService = Depends(get_booking_service)
):
    return await service.list_user_bookings(user_id, status_filter, page, size)


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service)
):
    return await service.get_booking(booking_id)


@router.post("/{booking_id}/accept", response_model=Booking)
async def accept_booking(
    booking_id: str,
    request: DriverRequest,
    service: BookingService = Depends(get_booking_service)
):
    return await service.accept(booking_id, request.driver_id)


@router.post("/{booking_id}/reject", response_model=Booking)
async def reject_booking(
    booking_id: str,
    request: DriverRequest,
    service: BookingService = Depends(get_booking_service)
):
    return await service.reject(booking_id, request.driver_id)


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(
    booking_id: str,
    request: ActorRequest,
    service: BookingService = Depends(get_booking_service)
):
    return await service.cancel(booking_id, request.actor_id)


@router.post("/{booking_id}/start", response_model=Booking)
async def start_trip(
    booking_id: str,
    request: DriverRequest,
    service: BookingService = Depends(get_booking_service)
):
    return await service.start_trip(booking_id, request.driver_id)


@router.post("/{booking_id}/complete", response_model=Booking)
async def complete_booking(
    booking_id: str,
    request: CompleteRequest,
    service: BookingService = Depends(get_booking_service)
):
    return await service.complete_from_trip(booking_id, request.completed_at)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: str,
    actor_id: str = Query(...),
    service: BookingService = Depends(get_booking_service)
):
    await service.delete_booking(booking_id, actor_id)
