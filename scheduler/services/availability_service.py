"""
Availability Service - Turns a resource's constraints into labeled time slots.

``compute_slots`` is a pure function: given the resource's constraints for a
date, the day's bookings and a service duration, it partitions the display
window into ordered, non-overlapping segments:

- bookable: free time inside working hours long enough for the service
- blocked: bookings, time-off, or free gaps too short for the service
- outside_hours: display window before opening / after closing
- day_off: the whole window when the resource does not work that day

The segments always cover the display window exactly once. The window
defaults to 06:00-23:00 and widens to include working hours and anything
occupied that day so nothing is clipped from view.

``AvailabilityService`` is the async wrapper that loads the inputs.
"""

import calendar
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID

from database.connection import Database
from database.models import BookingStatus
from scheduler.errors import InvalidDuration
from scheduler.services.booking_query_service import get_booked_for_day, get_booked_for_range
from scheduler.services.catalog_service import CatalogService
from scheduler.services.constraint_source import ConstraintSource, ResourceConstraints
from scheduler.utils.time_model import format_minutes, to_minutes
from shared.config import Settings

logger = logging.getLogger(__name__)

# Default visible range of a calendar day (06:00-23:00)
DEFAULT_DISPLAY_WINDOW = (6 * 60, 23 * 60)


class SlotKind(str, Enum):
    """Label of a derived time segment."""

    BOOKABLE = "bookable"
    BLOCKED = "blocked"
    OUTSIDE_HOURS = "outside_hours"
    DAY_OFF = "day_off"


@dataclass(frozen=True)
class Slot:
    """Derived, non-persisted time segment [start_minutes, end_minutes)."""

    start_minutes: int
    end_minutes: int
    kind: SlotKind
    booking_ids: tuple[UUID, ...] = ()
    time_off_ids: tuple[UUID, ...] = ()

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": format_minutes(self.start_minutes),
            "end_time": format_minutes(self.end_minutes),
            "kind": self.kind.value,
            "booking_ids": [str(b) for b in self.booking_ids],
            "time_off_ids": [str(t) for t in self.time_off_ids],
        }


@dataclass(frozen=True)
class BookingInterval:
    """Minimal view of a booking for availability math."""

    id: UUID | None
    start_minutes: int
    end_minutes: int
    status: str = BookingStatus.BOOKED.value

    @classmethod
    def from_booking(cls, booking: Any) -> "BookingInterval":
        status = booking.status
        return cls(
            id=booking.id,
            start_minutes=to_minutes(booking.start_time),
            end_minutes=to_minutes(booking.end_time),
            status=status.value if isinstance(status, BookingStatus) else str(status),
        )


@dataclass(frozen=True)
class _Occupied:
    start: int
    end: int
    booking_id: UUID | None = None
    time_off_id: UUID | None = None


@dataclass
class _Segment:
    start: int
    end: int
    kind: SlotKind | None  # None = free, labeled after merging
    booking_ids: tuple = ()
    time_off_ids: tuple = ()
    sources: frozenset = field(default_factory=frozenset)


def _occupied_intervals(
    constraints: ResourceConstraints,
    target_date: date,
    existing_bookings: Iterable[BookingInterval],
) -> list[_Occupied]:
    occupied = []
    for booking in existing_bookings:
        if booking.status != BookingStatus.BOOKED.value:
            continue
        if booking.end_minutes <= booking.start_minutes:
            continue
        occupied.append(_Occupied(booking.start_minutes, booking.end_minutes, booking_id=booking.id))

    for block in constraints.time_off_on(target_date):
        if block.end_minutes <= block.start_minutes:
            continue
        occupied.append(_Occupied(block.start_minutes, block.end_minutes, time_off_id=block.id))

    occupied.sort(key=lambda o: (o.start, o.end))
    return occupied


def compute_slots(
    constraints: ResourceConstraints,
    target_date: date,
    service_duration_minutes: int,
    existing_bookings: Iterable[BookingInterval] = (),
    display_window: tuple[int, int] = DEFAULT_DISPLAY_WINDOW,
) -> list[Slot]:
    """
    Partition the display window of ``target_date`` into labeled slots.

    Args:
        constraints: Constraints of the resource (range must include target_date)
        target_date: Date to compute
        service_duration_minutes: Requested service length (service + add-ons)
        existing_bookings: Bookings of the resource on target_date; rows with a
            status other than "booked" are ignored
        display_window: Default visible (start, end) in minutes

    Returns:
        Slots sorted by start, contiguous and non-overlapping, whose union is
        exactly the (widened) display window.

    Raises:
        InvalidDuration: If service_duration_minutes <= 0
    """
    if service_duration_minutes <= 0:
        raise InvalidDuration(
            f"Service duration must be positive, got {service_duration_minutes}",
            {"service_duration_minutes": service_duration_minutes},
        )

    day = constraints.for_day(target_date)
    occupied = _occupied_intervals(constraints, target_date, existing_bookings)

    window_start, window_end = display_window
    for interval in occupied:
        window_start = min(window_start, interval.start)
        window_end = max(window_end, interval.end)

    if day.day_off:
        return [Slot(window_start, window_end, SlotKind.DAY_OFF)]

    window_start = min(window_start, day.open_minutes)
    window_end = max(window_end, day.close_minutes)

    boundaries = {window_start, window_end, day.open_minutes, day.close_minutes}
    for interval in occupied:
        boundaries.add(interval.start)
        boundaries.add(interval.end)
    points = sorted(boundaries)

    # Label every elementary segment; occupied beats working-window edges
    segments: list[_Segment] = []
    for start, end in zip(points, points[1:]):
        covering = [o for o in occupied if o.start < end and start < o.end]
        if covering:
            booking_ids = tuple(sorted({o.booking_id for o in covering if o.booking_id}, key=str))
            time_off_ids = tuple(sorted({o.time_off_id for o in covering if o.time_off_id}, key=str))
            segments.append(_Segment(
                start, end, SlotKind.BLOCKED,
                booking_ids=booking_ids,
                time_off_ids=time_off_ids,
                sources=frozenset(booking_ids) | frozenset(time_off_ids),
            ))
        elif start >= day.open_minutes and end <= day.close_minutes:
            segments.append(_Segment(start, end, None))
        else:
            segments.append(_Segment(start, end, SlotKind.OUTSIDE_HOURS))

    merged: list[_Segment] = []
    for segment in segments:
        previous = merged[-1] if merged else None
        if (
            previous is not None
            and previous.kind == segment.kind
            and previous.sources == segment.sources
            and previous.end == segment.start
        ):
            previous.end = segment.end
        else:
            merged.append(segment)

    slots = []
    for segment in merged:
        kind = segment.kind
        if kind is None:
            length = segment.end - segment.start
            kind = SlotKind.BOOKABLE if length >= service_duration_minutes else SlotKind.BLOCKED
        slots.append(Slot(
            segment.start,
            segment.end,
            kind,
            booking_ids=segment.booking_ids,
            time_off_ids=segment.time_off_ids,
        ))

    return slots


def enumerate_start_times(
    slots: Iterable[Slot],
    service_duration_minutes: int,
    step_minutes: int | None = None,
) -> list[dict[str, str]]:
    """
    Concrete start times that fit inside bookable slots.

    By default consecutive offers are back-to-back (step = duration).

    Example:
        >>> enumerate_start_times([Slot(540, 660, SlotKind.BOOKABLE)], 60)
        [{'start_time': '09:00', 'end_time': '10:00'}, {'start_time': '10:00', 'end_time': '11:00'}]
    """
    if service_duration_minutes <= 0:
        raise InvalidDuration(
            f"Service duration must be positive, got {service_duration_minutes}",
            {"service_duration_minutes": service_duration_minutes},
        )
    step = step_minutes or service_duration_minutes

    offers = []
    for slot in slots:
        if slot.kind != SlotKind.BOOKABLE:
            continue
        current = slot.start_minutes
        while current + service_duration_minutes <= slot.end_minutes:
            offers.append({
                "start_time": format_minutes(current),
                "end_time": format_minutes(current + service_duration_minutes),
            })
            current += step
    return offers


def _booked_minutes_within(
    intervals: list[tuple[int, int]], open_minutes: int, close_minutes: int
) -> int:
    """Length of the union of intervals clipped to [open, close)."""
    clipped = sorted(
        (max(s, open_minutes), min(e, close_minutes))
        for s, e in intervals
        if s < close_minutes and e > open_minutes
    )
    total = 0
    current_start, current_end = None, None
    for start, end in clipped:
        if current_end is None or start > current_end:
            if current_end is not None:
                total += current_end - current_start
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_end is not None:
        total += current_end - current_start
    return total


def get_unavailable_days(
    constraints: ResourceConstraints,
    year: int,
    month: int,
    existing_bookings: dict[date, list[BookingInterval]] | None = None,
) -> list[date]:
    """
    Dates of a month on which nothing can be booked for the resource.

    A date is unavailable when it is a day off (no hours, day-off flag,
    vacation, holiday, inactive resource) or when bookings and time-off
    cover the whole working window.
    """
    existing_bookings = existing_bookings or {}
    days_in_month = calendar.monthrange(year, month)[1]

    unavailable = []
    for day_number in range(1, days_in_month + 1):
        target_date = date(year, month, day_number)
        day = constraints.for_day(target_date)
        if day.day_off:
            unavailable.append(target_date)
            continue

        intervals = [
            (b.start_minutes, b.end_minutes)
            for b in existing_bookings.get(target_date, [])
            if b.status == BookingStatus.BOOKED.value
        ]
        intervals.extend(
            (t.start_minutes, t.end_minutes) for t in constraints.time_off_on(target_date)
        )
        covered = _booked_minutes_within(intervals, day.open_minutes, day.close_minutes)
        if covered >= day.working_minutes:
            unavailable.append(target_date)

    return unavailable


class AvailabilityService:
    """
    Loads constraints, bookings and catalog durations and runs compute_slots.

    Example:
        >>> service = AvailabilityService(database, constraint_source, catalog, settings)
        >>> slots = await service.compute_availability(resource_id, day, service_id, [])
    """

    def __init__(
        self,
        database: Database,
        constraint_source: ConstraintSource,
        catalog: CatalogService,
        settings: Settings,
    ) -> None:
        self._database = database
        self._constraints = constraint_source
        self._catalog = catalog
        self._display_window = (
            to_minutes(settings.DISPLAY_WINDOW_START),
            to_minutes(settings.DISPLAY_WINDOW_END),
        )

    @property
    def display_window(self) -> tuple[int, int]:
        return self._display_window

    async def compute_availability(
        self,
        resource_id: UUID,
        target_date: date,
        service_id: UUID,
        addon_ids: list[UUID] | None = None,
    ) -> tuple[list[Slot], int]:
        """
        ComputeAvailability(resource, date, service, add-ons).

        Returns:
            (slots, service_duration_minutes)
        """
        async with self._database.session() as session:
            duration = await self._catalog.resolve_duration(service_id, addon_ids, session=session)
            constraints = await self._constraints.get_constraints(
                resource_id, target_date, target_date, session=session
            )
            bookings = await get_booked_for_day(session, resource_id, target_date)

        slots = compute_slots(
            constraints,
            target_date,
            duration,
            [BookingInterval.from_booking(b) for b in bookings],
            display_window=self._display_window,
        )

        logger.info(
            f"Computed {len(slots)} slots for {target_date} ({duration} min)",
            extra={"resource_id": str(resource_id)},
        )
        return slots, duration

    async def unavailable_days(self, resource_id: UUID, year: int, month: int) -> list[date]:
        first_day = date(year, month, 1)
        last_day = date(year, month, calendar.monthrange(year, month)[1])

        async with self._database.session() as session:
            constraints = await self._constraints.get_constraints(
                resource_id, first_day, last_day, session=session
            )
            bookings = await get_booked_for_range(session, [resource_id], first_day, last_day)

        by_date: dict[date, list[BookingInterval]] = {}
        for booking in bookings:
            by_date.setdefault(booking.date, []).append(BookingInterval.from_booking(booking))

        return get_unavailable_days(constraints, year, month, by_date)
