"""
Transaction Validators for Booking Business Rules.

Validators that run INSIDE the booking guard transaction. Every query here
re-reads current state (with row locks where the decision depends on it);
nothing is trusted from a read made before the transaction started.
"""

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Booking, BookingStatus
from scheduler.utils.time_model import format_minutes, overlaps, to_minutes

logger = logging.getLogger(__name__)


async def find_conflicting_bookings(
    session: AsyncSession,
    resource_id: UUID,
    target_date: date,
    start_minutes: int,
    end_minutes: int,
    exclude_booking_id: UUID | None = None,
) -> list[Booking]:
    """
    Lock and return booked rows of (resource, date) overlapping [start, end).

    All booked rows of the partition are locked (SELECT ... FOR UPDATE), not
    only the overlapping ones, so concurrent writers to the same
    (resource, date) serialize on the same row set.
    """
    stmt = (
        select(Booking)
        .where(Booking.resource_id == resource_id)
        .where(Booking.date == target_date)
        .where(Booking.status == BookingStatus.BOOKED)
        .order_by(Booking.start_time)
        .with_for_update()
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)

    result = await session.execute(stmt)
    rows = list(result.scalars().all())

    return [
        row for row in rows
        if overlaps(start_minutes, end_minutes, to_minutes(row.start_time), to_minutes(row.end_time))
    ]


async def validate_slot_availability(
    session: AsyncSession,
    resource_id: UUID,
    target_date: date,
    start_minutes: int,
    end_minutes: int,
    exclude_booking_id: UUID | None = None,
) -> dict:
    """
    Validate that [start, end) does not overlap a booked row of the resource.

    Args:
        session: SQLAlchemy async session (must be in active transaction)
        resource_id: Resource UUID
        target_date: Booking date
        start_minutes: Proposed start (minutes since midnight)
        end_minutes: Proposed end (minutes since midnight)
        exclude_booking_id: Booking being rescheduled (never conflicts with itself)

    Returns:
        dict with validation result:
            {
                "available": bool,
                "error_code": str | None,  # "SLOT_TAKEN"
                "error_message": str | None,
                "conflicting_booking_id": UUID | None,
                "conflicting_booking_ids": list[UUID]
            }
    """
    conflicts = await find_conflicting_bookings(
        session, resource_id, target_date, start_minutes, end_minutes, exclude_booking_id
    )

    if conflicts:
        conflict = conflicts[0]
        logger.warning(
            f"Slot conflict detected: {target_date} "
            f"{format_minutes(start_minutes)}-{format_minutes(end_minutes)}",
            extra={
                "resource_id": str(resource_id),
                "booking_id": str(conflict.id),
            }
        )
        return {
            "available": False,
            "error_code": "SLOT_TAKEN",
            "error_message": "The selected time overlaps another booking of this resource.",
            "conflicting_booking_id": conflict.id,
            "conflicting_booking_ids": [c.id for c in conflicts],
        }

    return {
        "available": True,
        "error_code": None,
        "error_message": None,
        "conflicting_booking_id": None,
        "conflicting_booking_ids": [],
    }


async def validate_daily_limit(
    session: AsyncSession,
    requester_id: UUID,
    service_id: UUID,
    target_date: date,
    max_allowed: int,
) -> dict:
    """
    Validate the per-client limit of bookings of one service on one date.

    Returns:
        dict with validation result:
            {
                "valid": bool,
                "error_code": str | None,  # "BOOKING_LIMIT_EXCEEDED"
                "error_message": str | None,
                "current_count": int,
                "max_allowed": int
            }
    """
    stmt = (
        select(func.count())
        .select_from(Booking)
        .where(Booking.requester_id == requester_id)
        .where(Booking.service_id == service_id)
        .where(Booking.date == target_date)
        .where(Booking.status == BookingStatus.BOOKED)
    )
    result = await session.execute(stmt)
    current_count = result.scalar() or 0

    if current_count >= max_allowed:
        logger.warning(
            f"Daily booking limit reached for requester {requester_id}: "
            f"{current_count}/{max_allowed} (service {service_id}, {target_date})"
        )
        return {
            "valid": False,
            "error_code": "BOOKING_LIMIT_EXCEEDED",
            "error_message": (
                f"You already have {current_count} bookings of this service on {target_date}."
            ),
            "current_count": current_count,
            "max_allowed": max_allowed,
        }

    return {
        "valid": True,
        "error_code": None,
        "error_message": None,
        "current_count": current_count,
        "max_allowed": max_allowed,
    }
