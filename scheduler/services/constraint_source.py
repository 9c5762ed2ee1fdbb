"""
Constraint Source - read-only view of a resource's scheduling constraints.

Combines the weekly working hours table with vacations, business holidays and
the resource's active flag into a per-date answer: either an open/close window
or a day off. Time-off blocks are carried along for the availability
calculator.

Fails safe: a weekday with no configured working hours is a day off (never
"open all day").
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Database
from database.models import BusinessHoliday, Resource, TimeOffBlock, Vacation, WorkingHours
from scheduler.errors import ResourceNotFound
from scheduler.utils.time_model import to_minutes

logger = logging.getLogger(__name__)


class DayOffReason:
    """Why a date is unavailable for a resource."""

    INACTIVE = "inactive"
    HOLIDAY = "holiday"
    VACATION = "vacation"
    DAY_OFF = "day_off"
    NO_WORKING_HOURS = "no_working_hours"


@dataclass(frozen=True)
class WorkingHoursEntry:
    """Weekly schedule entry (day_of_week: 0=Monday ... 6=Sunday)."""

    day_of_week: int
    open_minutes: int | None
    close_minutes: int | None
    is_day_off: bool = False


@dataclass(frozen=True)
class TimeOffEntry:
    id: UUID | None
    date: date
    start_minutes: int
    end_minutes: int
    reason: str | None = None


@dataclass(frozen=True)
class VacationEntry:
    id: UUID | None
    start_date: date
    end_date: date
    reason: str | None = None

    def covers(self, target_date: date) -> bool:
        return self.start_date <= target_date <= self.end_date


@dataclass(frozen=True)
class DaySchedule:
    """Resolved working window for one date."""

    date: date
    open_minutes: int | None = None
    close_minutes: int | None = None
    day_off: bool = False
    reason: str | None = None

    @property
    def working_minutes(self) -> int:
        if self.day_off:
            return 0
        return self.close_minutes - self.open_minutes


@dataclass
class ResourceConstraints:
    """
    Constraints of one resource for an inclusive date range.

    ``for_day`` is only meaningful for dates inside [start_date, end_date]:
    vacations, holidays and time-off are loaded for that range only.
    """

    resource_id: UUID
    business_id: UUID | None
    start_date: date
    end_date: date
    is_active: bool = True
    working_hours: dict[int, WorkingHoursEntry] = field(default_factory=dict)
    time_off_blocks: list[TimeOffEntry] = field(default_factory=list)
    vacations: list[VacationEntry] = field(default_factory=list)
    holidays: set[date] = field(default_factory=set)

    def for_day(self, target_date: date) -> DaySchedule:
        if not self.is_active:
            return DaySchedule(target_date, day_off=True, reason=DayOffReason.INACTIVE)

        if target_date in self.holidays:
            return DaySchedule(target_date, day_off=True, reason=DayOffReason.HOLIDAY)

        if any(v.covers(target_date) for v in self.vacations):
            return DaySchedule(target_date, day_off=True, reason=DayOffReason.VACATION)

        entry = self.working_hours.get(target_date.weekday())
        if entry is None:
            return DaySchedule(target_date, day_off=True, reason=DayOffReason.NO_WORKING_HOURS)

        if entry.is_day_off or entry.open_minutes is None or entry.close_minutes is None:
            return DaySchedule(target_date, day_off=True, reason=DayOffReason.DAY_OFF)

        return DaySchedule(
            target_date,
            open_minutes=entry.open_minutes,
            close_minutes=entry.close_minutes,
        )

    def time_off_on(self, target_date: date) -> list[TimeOffEntry]:
        return sorted(
            (b for b in self.time_off_blocks if b.date == target_date),
            key=lambda b: (b.start_minutes, b.end_minutes),
        )

    def vacations_on(self, target_date: date) -> list[VacationEntry]:
        return [v for v in self.vacations if v.covers(target_date)]

    @property
    def day_off_dates(self) -> set[date]:
        days = set()
        current = self.start_date
        while current <= self.end_date:
            if self.for_day(current).day_off:
                days.add(current)
            current += timedelta(days=1)
        return days


def build_resource_constraints(
    resource: Any,
    start_date: date,
    end_date: date,
    working_hours: Iterable[Any] = (),
    time_off_blocks: Iterable[Any] = (),
    vacations: Iterable[Any] = (),
    holidays: Iterable[Any] = (),
) -> ResourceConstraints:
    """
    Convert ORM rows (or objects shaped like them) into ResourceConstraints.

    Args:
        resource: Resource row (id, business_id, is_active)
        start_date: First date of the range (inclusive)
        end_date: Last date of the range (inclusive)
        working_hours: WorkingHours rows
        time_off_blocks: TimeOffBlock rows
        vacations: Vacation rows
        holidays: BusinessHoliday rows or plain dates
    """
    hours: dict[int, WorkingHoursEntry] = {}
    for row in working_hours:
        hours[row.day_of_week] = WorkingHoursEntry(
            day_of_week=row.day_of_week,
            open_minutes=to_minutes(row.open_time) if row.open_time is not None else None,
            close_minutes=to_minutes(row.close_time) if row.close_time is not None else None,
            is_day_off=bool(row.is_day_off),
        )

    return ResourceConstraints(
        resource_id=resource.id,
        business_id=resource.business_id,
        start_date=start_date,
        end_date=end_date,
        is_active=bool(resource.is_active),
        working_hours=hours,
        time_off_blocks=[
            TimeOffEntry(
                id=row.id,
                date=row.date,
                start_minutes=to_minutes(row.start_time),
                end_minutes=to_minutes(row.end_time),
                reason=row.reason,
            )
            for row in time_off_blocks
        ],
        vacations=[
            VacationEntry(
                id=row.id,
                start_date=row.start_date,
                end_date=row.end_date,
                reason=row.reason,
            )
            for row in vacations
        ],
        holidays={h if isinstance(h, date) else h.date for h in holidays},
    )


class ConstraintSource:
    """
    Loads ResourceConstraints from the database.

    Example:
        >>> source = ConstraintSource(database)
        >>> constraints = await source.get_constraints(resource_id, day, day)
        >>> constraints.for_day(day).day_off
        False
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_constraints(
        self,
        resource_id: UUID,
        start_date: date,
        end_date: date,
        session: AsyncSession | None = None,
    ) -> ResourceConstraints:
        """
        Get constraints for one resource and an inclusive date range.

        Args:
            resource_id: Resource UUID
            start_date: First date (inclusive)
            end_date: Last date (inclusive)
            session: Optional session to join an ongoing transaction

        Raises:
            ResourceNotFound: If the resource id does not resolve
        """
        if session is not None:
            return await self._load(session, resource_id, start_date, end_date)

        async with self._database.session() as own_session:
            return await self._load(own_session, resource_id, start_date, end_date)

    async def get_business_constraints(
        self,
        business_id: UUID,
        start_date: date,
        end_date: date,
        session: AsyncSession | None = None,
    ) -> dict[UUID, ResourceConstraints]:
        """Constraints for every active resource of a business, keyed by resource id."""
        if session is not None:
            return await self._load_business(session, business_id, start_date, end_date)

        async with self._database.session() as own_session:
            return await self._load_business(own_session, business_id, start_date, end_date)

    async def _load(
        self, session: AsyncSession, resource_id: UUID, start_date: date, end_date: date
    ) -> ResourceConstraints:
        result = await session.execute(select(Resource).where(Resource.id == resource_id))
        resource = result.scalar_one_or_none()

        if resource is None:
            logger.warning(f"Resource not found: {resource_id}", extra={"resource_id": str(resource_id)})
            raise ResourceNotFound(
                f"Resource {resource_id} not found", {"resource_id": str(resource_id)}
            )

        hours = await session.execute(
            select(WorkingHours).where(WorkingHours.resource_id == resource_id)
        )
        time_off = await session.execute(
            select(TimeOffBlock)
            .where(TimeOffBlock.resource_id == resource_id)
            .where(TimeOffBlock.date >= start_date)
            .where(TimeOffBlock.date <= end_date)
        )
        vacations = await session.execute(
            select(Vacation)
            .where(Vacation.resource_id == resource_id)
            .where(Vacation.start_date <= end_date)
            .where(Vacation.end_date >= start_date)
        )
        holidays = await session.execute(
            select(BusinessHoliday)
            .where(BusinessHoliday.business_id == resource.business_id)
            .where(BusinessHoliday.date >= start_date)
            .where(BusinessHoliday.date <= end_date)
        )

        return build_resource_constraints(
            resource,
            start_date,
            end_date,
            working_hours=hours.scalars().all(),
            time_off_blocks=time_off.scalars().all(),
            vacations=vacations.scalars().all(),
            holidays=holidays.scalars().all(),
        )

    async def _load_business(
        self, session: AsyncSession, business_id: UUID, start_date: date, end_date: date
    ) -> dict[UUID, ResourceConstraints]:
        result = await session.execute(
            select(Resource)
            .where(Resource.business_id == business_id)
            .where(Resource.is_active.is_(True))
            .order_by(Resource.name)
        )
        resources = list(result.scalars().all())
        if not resources:
            return {}

        resource_ids = [r.id for r in resources]

        hours = await session.execute(
            select(WorkingHours).where(WorkingHours.resource_id.in_(resource_ids))
        )
        time_off = await session.execute(
            select(TimeOffBlock)
            .where(TimeOffBlock.resource_id.in_(resource_ids))
            .where(TimeOffBlock.date >= start_date)
            .where(TimeOffBlock.date <= end_date)
        )
        vacations = await session.execute(
            select(Vacation)
            .where(Vacation.resource_id.in_(resource_ids))
            .where(Vacation.start_date <= end_date)
            .where(Vacation.end_date >= start_date)
        )
        holidays = await session.execute(
            select(BusinessHoliday)
            .where(BusinessHoliday.business_id == business_id)
            .where(BusinessHoliday.date >= start_date)
            .where(BusinessHoliday.date <= end_date)
        )

        hours_by_resource = defaultdict(list)
        for row in hours.scalars().all():
            hours_by_resource[row.resource_id].append(row)
        time_off_by_resource = defaultdict(list)
        for row in time_off.scalars().all():
            time_off_by_resource[row.resource_id].append(row)
        vacations_by_resource = defaultdict(list)
        for row in vacations.scalars().all():
            vacations_by_resource[row.resource_id].append(row)
        holiday_rows = list(holidays.scalars().all())

        return {
            resource.id: build_resource_constraints(
                resource,
                start_date,
                end_date,
                working_hours=hours_by_resource[resource.id],
                time_off_blocks=time_off_by_resource[resource.id],
                vacations=vacations_by_resource[resource.id],
                holidays=holiday_rows,
            )
            for resource in resources
        }
