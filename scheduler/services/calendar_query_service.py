"""
Calendar Query Service - the day view staff calendars render.

``get_business_day`` is also the reconciling read used by CalendarViewSync:
it always reflects committed state, so a viewer that missed change events
recovers by calling it again.
"""

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select

from database.connection import Database
from database.models import Resource
from scheduler.services.availability_service import BookingInterval, compute_slots
from scheduler.services.booking_query_service import get_booked_for_range
from scheduler.services.change_propagation import booking_snapshot
from scheduler.services.constraint_source import ConstraintSource
from scheduler.utils.time_model import format_minutes, to_minutes
from shared.config import Settings

logger = logging.getLogger(__name__)


class CalendarQueryService:
    """
    Read-only multi-resource day view.

    Example:
        >>> service = CalendarQueryService(database, constraint_source, settings)
        >>> view = await service.get_business_day(business_id, day)
        >>> [r["day_off"] for r in view["resources"]]
        [False, True]
    """

    def __init__(
        self,
        database: Database,
        constraint_source: ConstraintSource,
        settings: Settings,
    ) -> None:
        self._database = database
        self._constraints = constraint_source
        self._grid_minutes = settings.SLOT_GRID_MINUTES
        self._display_window = (
            to_minutes(settings.DISPLAY_WINDOW_START),
            to_minutes(settings.DISPLAY_WINDOW_END),
        )

    async def get_business_day(self, business_id: UUID, target_date: date) -> dict[str, Any]:
        """
        Day view of every active resource of a business.

        Returns:
            {
                "business_id": str,
                "date": "YYYY-MM-DD",
                "resources": [
                    {
                        "resource_id", "name", "day_off", "reason",
                        "open_time", "close_time",
                        "bookings", "time_off", "vacations", "slots"
                    },
                    ...
                ]
            }
        """
        async with self._database.session() as session:
            by_resource = await self._constraints.get_business_constraints(
                business_id, target_date, target_date, session=session
            )
            names_result = await session.execute(
                select(Resource.id, Resource.name).where(Resource.business_id == business_id)
            )
            names = {row.id: row.name for row in names_result}
            bookings = await get_booked_for_range(
                session, list(by_resource), target_date, target_date
            )

        bookings_by_resource: dict[UUID, list] = {}
        for booking in bookings:
            bookings_by_resource.setdefault(booking.resource_id, []).append(booking)

        resources = []
        for resource_id, constraints in by_resource.items():
            schedule = constraints.for_day(target_date)
            rows = bookings_by_resource.get(resource_id, [])
            slots = compute_slots(
                constraints,
                target_date,
                self._grid_minutes,
                [BookingInterval.from_booking(b) for b in rows],
                display_window=self._display_window,
            )
            resources.append({
                "resource_id": str(resource_id),
                "name": names.get(resource_id),
                "day_off": schedule.day_off,
                "reason": schedule.reason,
                "open_time": (
                    format_minutes(schedule.open_minutes) if not schedule.day_off else None
                ),
                "close_time": (
                    format_minutes(schedule.close_minutes) if not schedule.day_off else None
                ),
                "bookings": [booking_snapshot(b) for b in rows],
                "time_off": [
                    {
                        "id": str(block.id) if block.id else None,
                        "start_time": format_minutes(block.start_minutes),
                        "end_time": format_minutes(block.end_minutes),
                        "reason": block.reason,
                    }
                    for block in constraints.time_off_on(target_date)
                ],
                "vacations": [
                    {
                        "id": str(v.id) if v.id else None,
                        "start_date": v.start_date.isoformat(),
                        "end_date": v.end_date.isoformat(),
                        "reason": v.reason,
                    }
                    for v in constraints.vacations_on(target_date)
                ],
                "slots": [slot.to_dict() for slot in slots],
            })

        logger.debug(
            f"Business day view built: {len(resources)} resources, {len(bookings)} bookings",
            extra={"business_id": str(business_id)},
        )
        return {
            "business_id": str(business_id),
            "date": target_date.isoformat(),
            "resources": resources,
        }
