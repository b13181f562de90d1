# src/core/matching/service.py
"""
Driver matcher.
Finds online, free drivers around the pickup point and orders them for the broadcast.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Optional

from src.common.constants import TypeMsg
from src.common.errors import DownstreamUnavailable
from src.common.logger import log_error, log_info, log_warning
from src.core.eligibility.store import RejectionStore
from src.core.matching.models import CustomerPreferences, DriverCandidate, MatchRequest, MatchResult
from src.core.matching.ranking import rank_by_distance
from src.core.resilience.caller import ResilientCaller
from src.infra.collaborators import BookingQueryClient, DriverDirectoryClient
from src.infra.redis_client import RedisClient

DRIVER_DIRECTORY = "driver-directory"
BOOKING_QUERIES = "booking-queries"


class DriverMatcher:
    """
    Candidate search for a booking.

    Order of operations: exclusions, online drivers, busy filter (fail-safe),
    distance ranking, customer preferences, preferred-first partition, history re-sort.
    Never raises on collaborator failure: the result is success=False instead.
    """

    def __init__(
        self,
        drivers: DriverDirectoryClient,
        bookings: BookingQueryClient,
        rejections: RejectionStore,
        redis: RedisClient,
        caller: ResilientCaller,
    ) -> None:
        """
        Args:
            drivers: Online driver directory
            bookings: Booking availability/history queries
            rejections: Per-booking rejected drivers
            redis: Cache for blocked drivers, preferences and search results
            caller: Retry/circuit policy for collaborator calls
        """
        self._drivers = drivers
        self._bookings = bookings
        self._rejections = rejections
        self._redis = redis
        self._caller = caller

    async def find_candidates(self, request: MatchRequest) -> MatchResult:
        """
        Runs a driver search.

        Args:
            request: Reference point, radius, exclusions, optional customer/booking

        Returns:
            Ordered candidates, or an empty result with a reason
        """
        try:
            result = await self._search(request)
        except DownstreamUnavailable as e:
            await log_warning(
                f"Driver search degraded, {e.target} unavailable: {e.reason}",
                extra={"booking_id": request.booking_id, "customer_id": request.customer_id},
            )
            return MatchResult.empty("Driver search is temporarily unavailable, please try again")
        except Exception as e:
            await log_error(f"Driver search failed: {e}", extra={"booking_id": request.booking_id}, exc_info=True)
            return MatchResult.empty("An error occurred while searching for drivers")

        await log_info(
            f"Driver search within {request.radius_km} km: {result.message}",
            type_msg=TypeMsg.DEBUG,
            extra={"booking_id": request.booking_id, "found": len(result.candidates)},
        )
        return result

    async def _search(self, request: MatchRequest) -> MatchResult:
        excluded = await self._excluded_drivers(request)

        raw = await self._caller.call(
            DRIVER_DIRECTORY,
            self._drivers.find_online_drivers,
            request.vehicle_type,
            sorted(excluded),
            request.latitude,
            request.longitude,
        )
        online = [DriverCandidate.from_dict(item) for item in raw]
        online = [c for c in online if c.driver_id not in excluded]
        if not online:
            return MatchResult.empty("No drivers are available right now")

        free = await self._without_busy_drivers(online)
        if not free:
            return MatchResult.empty("All online drivers are currently busy")

        ranked = rank_by_distance(request.latitude, request.longitude, free, request.radius_km)
        if not ranked:
            return MatchResult.empty(f"No drivers found within {request.radius_km} km")

        trip_counts: dict[str, int] = {}
        if request.customer_id:
            preferences = await self._preferences(request.customer_id)
            ranked = [c for c in ranked if preferences.allows(c)]
            if not ranked:
                return MatchResult.empty("No drivers match the customer's preferences")
            trip_counts = await self._trip_counts(request.customer_id)

        preferred_ids = set(request.preferred_driver_ids)
        preferred = [c for c in ranked if c.driver_id in preferred_ids]
        rest = [c for c in ranked if c.driver_id not in preferred_ids]

        if trip_counts:
            rest.sort(key=lambda c: (-trip_counts.get(c.driver_id, 0), -c.rating, c.distance_km, c.driver_id))

        candidates = preferred + rest
        if request.customer_id:
            from src.config import settings

            min_trips = settings.search.PREFERRED_MIN_TRIPS
            for candidate in candidates:
                candidate.previous_trip_count = trip_counts.get(candidate.driver_id, 0)
                candidate.is_preferred = candidate.previous_trip_count >= min_trips

        result = MatchResult(
            candidates=candidates,
            success=True,
            message=f"Found {len(candidates)} nearby drivers",
        )
        if request.customer_id:
            await self._cache_result(request.customer_id, result)
        return result

    # =========================================================================
    # EXCLUSIONS
    # =========================================================================

    async def _excluded_drivers(self, request: MatchRequest) -> set[str]:
        excluded = {str(d) for d in request.excluded_driver_ids}
        if request.customer_id:
            excluded |= await self.blocked_drivers(request.customer_id)
        if request.booking_id:
            excluded |= set(await self._rejections.list(request.booking_id))
        return excluded

    async def blocked_drivers(self, customer_id: str) -> set[str]:
        """
        Drivers this customer ended up cancelling with too often.

        A driver is blocked after BLOCK_CANCELLATION_THRESHOLD cancelled bookings
        with this customer inside BLOCK_WINDOW_DAYS. Cached for BLOCKED_DRIVERS_TTL.
        """
        from src.config import settings

        cache_key = f"blocked:{customer_id}"
        cached = await self._redis.smembers(cache_key)
        if cached:
            return set(cached)

        try:
            cancelled = await self._caller.call(
                BOOKING_QUERIES,
                self._bookings.get_customer_cancelled_bookings,
                customer_id,
                settings.search.BLOCK_WINDOW_DAYS,
            )
        except DownstreamUnavailable as e:
            await log_warning(f"Blocked drivers unknown for customer {customer_id}: {e.reason}")
            return set()

        counts = Counter(str(b["driver_id"]) for b in cancelled if b.get("driver_id"))
        blocked = {d for d, n in counts.items() if n >= settings.search.BLOCK_CANCELLATION_THRESHOLD}
        if blocked:
            await self._redis.sadd_with_ttl(cache_key, sorted(blocked), settings.redis_ttl.BLOCKED_DRIVERS_TTL)
        return blocked

    async def _without_busy_drivers(self, candidates: list[DriverCandidate]) -> list[DriverCandidate]:
        """Drops drivers with an active booking; unknown availability counts as busy."""
        ids = [c.driver_id for c in candidates]
        try:
            rows = await self._caller.call(
                BOOKING_QUERIES,
                self._bookings.check_drivers_active_booking,
                ids,
            )
        except DownstreamUnavailable as e:
            await log_warning(
                f"Availability check failed, excluding all {len(ids)} drivers: {e.reason}",
            )
            return []

        available = {str(row["driver_id"]) for row in rows if row.get("is_available") is True}
        return [c for c in candidates if c.driver_id in available]

    # =========================================================================
    # CUSTOMER CONTEXT
    # =========================================================================

    async def _preferences(self, customer_id: str) -> CustomerPreferences:
        from src.config import settings

        cache_key = f"preferences:{customer_id}"
        try:
            data = await self._redis.get_json(cache_key)
            if isinstance(data, dict):
                return CustomerPreferences.model_validate(data)
            preferences = CustomerPreferences.defaults()
            await self._redis.set_json(cache_key, preferences.model_dump(), ttl=settings.redis_ttl.PREFERENCES_TTL)
            return preferences
        except Exception as e:
            await log_warning(f"Using default preferences for customer {customer_id}: {e}")
            return CustomerPreferences.defaults()

    async def _trip_counts(self, customer_id: str) -> dict[str, int]:
        """Completed trips per driver for this customer; empty when history is unavailable."""
        from src.config import settings

        try:
            history = await self._caller.call(
                BOOKING_QUERIES,
                self._bookings.get_customer_booking_history,
                customer_id,
                settings.search.HISTORY_DAYS_BACK,
                settings.search.HISTORY_LIMIT,
            )
        except DownstreamUnavailable as e:
            await log_warning(f"Trip history unavailable for customer {customer_id}: {e.reason}")
            return {}
        return dict(Counter(str(b["driver_id"]) for b in history if b.get("driver_id")))

    async def _cache_result(self, customer_id: str, result: MatchResult) -> None:
        from src.config import settings

        payload: dict[str, Any] = {
            "drivers": [c.to_dict() for c in result.candidates],
            "message": result.message,
        }
        try:
            await self._redis.set_json(
                f"search-cache:{customer_id}",
                payload,
                ttl=settings.redis_ttl.SEARCH_CACHE_TTL,
            )
        except Exception as e:
            await log_warning(f"Search result not cached for customer {customer_id}: {e}")

    async def cached_result(self, customer_id: str) -> Optional[list[DriverCandidate]]:
        """Last successful search for the customer, if still cached."""
        data = await self._redis.get_json(f"search-cache:{customer_id}")
        if not isinstance(data, dict):
            return None
        return [DriverCandidate.from_dict(d) for d in data.get("drivers", [])]
