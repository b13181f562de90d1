# src/core/eligibility/store.py
"""
Per-booking driver sets kept in Redis.

EligibilityStore  eligible:{booking_id}       drivers allowed to accept
RejectionStore    rejected:{booking_id}       drivers who declined
ready marker      drivers-ready:{booking_id}  freshness of the last broadcast
"""

from __future__ import annotations

from typing import Iterable, Optional

from src.common.logger import log_warning
from src.infra.redis_client import RedisClient


class EligibilityStore:
    """Which drivers may accept a booking."""

    def __init__(
        self,
        redis: RedisClient,
        eligible_ttl: Optional[int] = None,
        ready_ttl: Optional[int] = None,
    ) -> None:
        from src.config import settings

        self._redis = redis
        self._eligible_ttl = eligible_ttl or settings.redis_ttl.ELIGIBLE_TTL
        self._ready_ttl = ready_ttl or settings.redis_ttl.DRIVERS_READY_TTL

    @staticmethod
    def _key(booking_id: str) -> str:
        return f"eligible:{booking_id}"

    @staticmethod
    def _ready_key(booking_id: str) -> str:
        return f"drivers-ready:{booking_id}"

    async def grant(
        self,
        booking_id: str,
        driver_ids: Iterable[str],
        ttl: Optional[int] = None,
    ) -> int:
        """
        Adds drivers to the eligible set and refreshes its TTL atomically.

        Returns:
            Number of newly granted drivers
        """
        members = [str(d) for d in driver_ids]
        if not members:
            return 0
        return await self._redis.sadd_with_ttl(
            self._key(booking_id),
            members,
            ttl or self._eligible_ttl,
        )

    async def is_eligible(self, booking_id: str, driver_id: str) -> bool:
        """Membership check; an unreadable set means not eligible."""
        try:
            return await self._redis.sismember(self._key(booking_id), str(driver_id))
        except Exception as e:
            await log_warning(
                f"Eligibility check failed for booking {booking_id}, treating driver as ineligible: {e}",
                extra={"booking_id": booking_id, "driver_id": driver_id},
            )
            return False

    async def revoke_all(self, booking_id: str) -> list[str]:
        """Clears the set and returns the drivers that were in it."""
        members = await self._redis.spop_all(self._key(booking_id))
        return sorted(members)

    async def list(self, booking_id: str) -> list[str]:
        """Current eligible drivers (sorted)."""
        return sorted(await self._redis.smembers(self._key(booking_id)))

    async def mark_ready(self, booking_id: str, ttl: Optional[int] = None) -> None:
        """Starts the acceptance window for the current broadcast."""
        await self._redis.set(self._ready_key(booking_id), "1", ttl=ttl or self._ready_ttl)

    async def is_ready_fresh(self, booking_id: str) -> bool:
        """True while the acceptance window is open."""
        return await self._redis.exists(self._ready_key(booking_id))

    async def clear_ready(self, booking_id: str) -> None:
        await self._redis.delete(self._ready_key(booking_id))


class RejectionStore:
    """Drivers who declined a booking; excluded from re-matching."""

    def __init__(self, redis: RedisClient, ttl: Optional[int] = None) -> None:
        from src.config import settings

        self._redis = redis
        self._ttl = ttl or settings.redis_ttl.REJECTED_TTL

    @staticmethod
    def _key(booking_id: str) -> str:
        return f"rejected:{booking_id}"

    async def add(self, booking_id: str, driver_id: str) -> None:
        await self._redis.sadd_with_ttl(self._key(booking_id), [str(driver_id)], self._ttl)

    async def list(self, booking_id: str) -> list[str]:
        return sorted(await self._redis.smembers(self._key(booking_id)))

    async def clear(self, booking_id: str) -> None:
        await self._redis.delete(self._key(booking_id))
