# src/infra/collaborators.py
"""
HTTP clients for the services the dispatch coordinator talks to.
Thin httpx wrappers: they raise on transport or HTTP errors and leave
retry/circuit decisions to ResilientCaller.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx


class BaseClient:
    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        response = await self.client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def _post(self, path: str, json: Optional[dict[str, Any]] = None) -> Any:
        response = await self.client.post(path, json=json)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()


class DriverDirectoryClient(BaseClient):
    """Online driver directory."""

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        if base_url is None:
            from src.config import settings
            base_url = settings.deployment.DRIVER_SERVICE_URL
        super().__init__(f"{base_url}/api/v1/drivers", **kwargs)

    async def find_online_drivers(
        self,
        vehicle_type: Optional[str],
        excluded_ids: list[str],
        latitude: float,
        longitude: float,
    ) -> list[dict[str, Any]]:
        """Online drivers with a known location, minus the excluded ids."""
        data = await self._post("/online/search", json={
            "vehicle_type": vehicle_type,
            "excluded_ids": excluded_ids,
            "latitude": latitude,
            "longitude": longitude,
        })
        return data.get("items", []) if isinstance(data, dict) else (data or [])


class BookingQueryClient(BaseClient):
    """Booking-side availability and history queries."""

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        if base_url is None:
            from src.config import settings
            base_url = settings.deployment.BOOKING_QUERY_URL
        super().__init__(f"{base_url}/api/v1/bookings", **kwargs)

    async def check_drivers_active_booking(self, driver_ids: list[str]) -> list[dict[str, Any]]:
        """[{driver_id, is_available}] for the given drivers."""
        return await self._post("/drivers/availability", json={"driver_ids": driver_ids})

    async def get_customer_cancelled_bookings(self, customer_id: str, days_back: int) -> list[dict[str, Any]]:
        return await self._get(f"/customers/{customer_id}/cancelled", params={"days_back": days_back})

    async def get_customer_booking_history(
        self,
        customer_id: str,
        days_back: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        return await self._get(
            f"/customers/{customer_id}/history",
            params={"days_back": days_back, "limit": limit},
        )


class NotificationClient(BaseClient):
    """Push gateway for drivers and customers."""

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        if base_url is None:
            from src.config import settings
            base_url = settings.deployment.NOTIFICATION_SERVICE_URL
        super().__init__(f"{base_url}/api/v1/notifications", **kwargs)

    async def notify_driver(self, driver_id: str, event: str, payload: dict[str, Any]) -> None:
        await self._post(f"/drivers/{driver_id}", json={"event": event, "payload": payload})

    async def notify_customer(self, customer_id: str, event: str, payload: dict[str, Any]) -> None:
        await self._post(f"/customers/{customer_id}", json={"event": event, "payload": payload})
