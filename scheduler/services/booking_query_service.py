"""
Read queries over the bookings table.

Plain reads used by availability and calendar views. The conflict guard does
not use these: it re-reads with row locks inside its own transaction (see
scheduler/validators/transaction_validators.py).
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Booking, BookingStatus


async def get_booked_for_day(
    session: AsyncSession, resource_id: UUID, target_date: date
) -> list[Booking]:
    """All status=booked rows for (resource, date), ordered by start."""
    stmt = (
        select(Booking)
        .where(Booking.resource_id == resource_id)
        .where(Booking.date == target_date)
        .where(Booking.status == BookingStatus.BOOKED)
        .order_by(Booking.start_time)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_booked_for_range(
    session: AsyncSession, resource_ids: list[UUID], start_date: date, end_date: date
) -> list[Booking]:
    """All status=booked rows for several resources over an inclusive date range."""
    if not resource_ids:
        return []
    stmt = (
        select(Booking)
        .where(Booking.resource_id.in_(resource_ids))
        .where(Booking.date >= start_date)
        .where(Booking.date <= end_date)
        .where(Booking.status == BookingStatus.BOOKED)
        .order_by(Booking.date, Booking.start_time)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_booking(session: AsyncSession, booking_id: UUID, lock: bool = False) -> Booking | None:
    stmt = select(Booking).where(Booking.id == booking_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
