# src/core/bookings/repository.py
"""
Booking repository over PostgreSQL.
Every status change goes through conditional_transition (compare-and-set).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from src.common.constants import (
    ACTIVE_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    ActorRole,
    BookingStatus,
)
from src.core.bookings.models import (
    Booking,
    BookingHistoryDTO,
    CancelledBookingDTO,
    Location,
)
from src.infra.database import DatabaseManager

_COLUMNS = """
    id, customer_id, driver_id,
    pickup_latitude, pickup_longitude, pickup_address,
    destination_latitude, destination_longitude, destination_address,
    status, cancelled_by,
    created_at, updated_at, accepted_at, rejected_at, cancelled_at, started_at, completed_at
"""

# Columns a transition is allowed to write besides status
TRANSITION_FIELDS = frozenset({
    "driver_id",
    "cancelled_by",
    "accepted_at",
    "rejected_at",
    "cancelled_at",
    "started_at",
    "completed_at",
})


class BookingRepository:
    """Booking storage."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create(self, booking: Booking) -> Booking:
        """Inserts a new booking and returns the stored row."""
        row = await self._db.fetchrow(
            f"""
            INSERT INTO bookings (
                id, customer_id, driver_id,
                pickup_latitude, pickup_longitude, pickup_address,
                destination_latitude, destination_longitude, destination_address,
                status, created_at, updated_at
            )
            VALUES ($1, $2, NULL, $3, $4, $5, $6, $7, $8, $9, $10, $10)
            RETURNING {_COLUMNS}
            """,
            booking.id,
            booking.customer_id,
            booking.pickup.latitude,
            booking.pickup.longitude,
            booking.pickup.address,
            booking.destination.latitude,
            booking.destination.longitude,
            booking.destination.address,
            booking.status.value,
            booking.created_at,
        )
        return self._row_to_booking(row)

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        """Booking by id, or None."""
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM bookings WHERE id = $1",
            booking_id,
        )
        return self._row_to_booking(row) if row else None

    async def get_active_by_customer(self, customer_id: str) -> Optional[Booking]:
        """Latest PENDING/ACCEPTED/ONGOING booking of the customer."""
        row = await self._db.fetchrow(
            f"""
            SELECT {_COLUMNS} FROM bookings
            WHERE customer_id = $1 AND status = ANY($2::varchar[])
            ORDER BY created_at DESC
            LIMIT 1
            """,
            customer_id,
            [s.value for s in ACTIVE_BOOKING_STATUSES],
        )
        return self._row_to_booking(row) if row else None

    async def conditional_transition(
        self,
        booking_id: str,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        *,
        require_unassigned: bool = False,
        **fields: Any,
    ) -> Optional[Booking]:
        """
        Atomically moves a booking from expected_status to new_status.

        Args:
            booking_id: Booking id
            expected_status: Status the row must still have
            new_status: Status to write
            require_unassigned: Also require driver_id IS NULL
            **fields: Extra columns to write (see TRANSITION_FIELDS)

        Returns:
            Updated booking, or None when the row no longer matched
        """
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

        params: list[Any] = [booking_id, expected_status.value, new_status.value]
        assignments = ["status = $3", "updated_at = NOW()"]
        for column, value in fields.items():
            params.append(value.value if isinstance(value, ActorRole) else value)
            assignments.append(f"{column} = ${len(params)}")

        guard = " AND driver_id IS NULL" if require_unassigned else ""
        row = await self._db.fetchrow(
            f"""
            UPDATE bookings
            SET {", ".join(assignments)}
            WHERE id = $1 AND status = $2{guard}
            RETURNING {_COLUMNS}
            """,
            *params,
        )
        return self._row_to_booking(row) if row else None

    async def list_by_user(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> list[Booking]:
        """Bookings where the user is the customer or the driver, newest first."""
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bookings
            WHERE (customer_id = $1 OR driver_id = $1)
              AND ($2::varchar IS NULL OR status = $2)
            ORDER BY created_at DESC
            OFFSET $3 LIMIT $4
            """,
            user_id,
            status.value if status else None,
            offset,
            limit,
        )
        return [self._row_to_booking(row) for row in rows]

    async def count_by_user(self, user_id: str, status: Optional[BookingStatus] = None) -> int:
        """Count for list_by_user."""
        return await self._db.fetchval(
            """
            SELECT COUNT(*) FROM bookings
            WHERE (customer_id = $1 OR driver_id = $1)
              AND ($2::varchar IS NULL OR status = $2)
            """,
            user_id,
            status.value if status else None,
        )

    async def delete_terminal(self, booking_id: str) -> bool:
        """Deletes a COMPLETED/CANCELLED booking. False if missing or still active."""
        deleted = await self._db.fetchval(
            """
            DELETE FROM bookings
            WHERE id = $1 AND status = ANY($2::varchar[])
            RETURNING id
            """,
            booking_id,
            [s.value for s in TERMINAL_BOOKING_STATUSES],
        )
        return deleted is not None

    async def get_drivers_with_active_booking(self, driver_ids: list[str]) -> list[str]:
        """Subset of driver_ids currently assigned to an ACCEPTED/ONGOING booking."""
        if not driver_ids:
            return []
        rows = await self._db.fetch(
            """
            SELECT DISTINCT driver_id FROM bookings
            WHERE driver_id = ANY($1::varchar[])
              AND status = ANY($2::varchar[])
            """,
            driver_ids,
            [BookingStatus.ACCEPTED.value, BookingStatus.ONGOING.value],
        )
        return [row["driver_id"] for row in rows]

    async def get_cancelled_by_customer(
        self,
        customer_id: str,
        since: datetime,
    ) -> list[CancelledBookingDTO]:
        """Cancelled bookings of a customer since the given moment."""
        rows = await self._db.fetch(
            """
            SELECT id, customer_id, driver_id, cancelled_by, cancelled_at
            FROM bookings
            WHERE customer_id = $1 AND status = $2 AND cancelled_at >= $3
            ORDER BY cancelled_at DESC
            """,
            customer_id,
            BookingStatus.CANCELLED.value,
            since,
        )
        return [
            CancelledBookingDTO(
                id=str(row["id"]),
                customer_id=row["customer_id"],
                driver_id=row["driver_id"],
                cancelled_by=row["cancelled_by"],
                cancelled_at=row["cancelled_at"],
            )
            for row in rows
        ]

    async def get_history_by_customer(
        self,
        customer_id: str,
        since: datetime,
        limit: int,
    ) -> list[BookingHistoryDTO]:
        """Completed bookings of a customer since the given moment, newest first."""
        rows = await self._db.fetch(
            """
            SELECT id, customer_id, driver_id, status, created_at
            FROM bookings
            WHERE customer_id = $1 AND status = $2 AND created_at >= $3
            ORDER BY created_at DESC
            LIMIT $4
            """,
            customer_id,
            BookingStatus.COMPLETED.value,
            since,
            limit,
        )
        return [
            BookingHistoryDTO(
                id=str(row["id"]),
                customer_id=row["customer_id"],
                driver_id=row["driver_id"],
                status=row["status"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def _row_to_booking(self, row: Any) -> Booking:
        """Maps a DB row to Booking."""
        return Booking(
            id=str(row["id"]),
            customer_id=row["customer_id"],
            driver_id=row["driver_id"],
            pickup=Location(
                latitude=row["pickup_latitude"],
                longitude=row["pickup_longitude"],
                address=row["pickup_address"],
            ),
            destination=Location(
                latitude=row["destination_latitude"],
                longitude=row["destination_longitude"],
                address=row["destination_address"],
            ),
            status=BookingStatus(row["status"]),
            cancelled_by=ActorRole(row["cancelled_by"]) if row["cancelled_by"] else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accepted_at=row["accepted_at"],
            rejected_at=row["rejected_at"],
            cancelled_at=row["cancelled_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
