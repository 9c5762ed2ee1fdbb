"""
Booking Conflict Guard - the only writer of the bookings table.

Every booking mutation (create, reschedule, resize, cancel, finish) goes
through BookingGuard. A create or reschedule:

1. Validates times and capabilities before touching the booking table
   (force override without staff capability -> Unauthorized; target
   resource off that day -> ResourceUnavailable, even with force)
2. Opens a SERIALIZABLE transaction with a bounded lock timeout
3. Re-reads and locks all booked rows of (resource, date)
4. Rejects on overlap unless force=True
5. Writes the row (reschedules keep the id and record previous date/times)
6. Commits, THEN publishes a change event (fire-and-forget)

A transaction failure (serialization failure, lock timeout, lost
connection, attempt timeout) is retried once with fresh re-reads; a second
failure raises TransientError. A Rejected outcome is never retried.

Force override is an explicit escape hatch: it may persist overlapping
bookings, e.g. a walk-in squeezed next to a scheduled client.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, TypeVar
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Database
from database.models import TERMINAL_STATUSES, Booking, BookingStatus
from scheduler.errors import (
    BookingLimitExceeded,
    BookingNotFound,
    BookingNotMutable,
    InvalidDuration,
    InvalidTimeFormat,
    ResourceUnavailable,
    TransientError,
    Unauthorized,
)
from scheduler.identity import CapabilityChecker, Principal
from scheduler.services.booking_query_service import get_booking
from scheduler.services.catalog_service import CatalogService
from scheduler.services.change_propagation import ChangeKind, ChangePublisher, booking_snapshot
from scheduler.services.constraint_source import ConstraintSource
from scheduler.utils.time_model import MINUTES_PER_DAY, format_minutes, from_minutes, to_minutes
from scheduler.validators.transaction_validators import (
    validate_daily_limit,
    validate_slot_availability,
)
from shared.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth one more attempt with fresh re-reads
TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, asyncio.TimeoutError, OSError)

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_transient(error: BaseException) -> bool:
    """True for failures a fresh attempt may get past; constraint and data errors are not."""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return True
        orig = error.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return sqlstate in TRANSIENT_SQLSTATES
    return False


@dataclass
class Accepted:
    """The write committed."""

    booking: Booking
    change_kind: ChangeKind
    forced_over: list[UUID] = field(default_factory=list)
    status: str = "accepted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "booking": booking_snapshot(self.booking),
            "forced_over_booking_ids": [str(b) for b in self.forced_over],
        }


@dataclass
class Rejected:
    """Overlap with an existing booking; nothing was written."""

    conflicting_booking_id: UUID
    conflicting_booking_ids: list[UUID] = field(default_factory=list)
    error_code: str = "SLOT_TAKEN"
    error_message: str = "The selected time overlaps another booking of this resource."
    status: str = "rejected"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "conflicting_booking_id": str(self.conflicting_booking_id),
            "conflicting_booking_ids": [str(b) for b in self.conflicting_booking_ids],
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


ProposalOutcome = Accepted | Rejected


class BookingGuard:
    """
    Transactional guard for booking writes.

    Example:
        >>> guard = BookingGuard(database, constraints, capabilities, publisher, catalog, settings)
        >>> outcome = await guard.propose_booking(
        ...     principal, resource_id, date(2026, 3, 2), "10:15", "10:45", service_id=service_id
        ... )
        >>> outcome.status
        'rejected'
    """

    def __init__(
        self,
        database: Database,
        constraint_source: ConstraintSource,
        capabilities: CapabilityChecker,
        publisher: ChangePublisher,
        catalog: CatalogService,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._constraints = constraint_source
        self._capabilities = capabilities
        self._publisher = publisher
        self._catalog = catalog
        self._timeout = settings.BOOKING_TRANSACTION_TIMEOUT_SECONDS
        self._lock_timeout_ms = int(settings.BOOKING_LOCK_TIMEOUT_MS)
        self._retries = settings.BOOKING_RETRY_ATTEMPTS
        self._max_per_service_per_day = settings.MAX_BOOKINGS_PER_SERVICE_PER_DAY
        business_tz = ZoneInfo(settings.TIMEZONE)
        self._clock = clock or (lambda: datetime.now(business_tz))

    # =========================================================================
    # Public operations
    # =========================================================================

    async def propose_booking(
        self,
        principal: Principal,
        resource_id: UUID,
        target_date: date,
        start: time | str,
        end: time | str,
        force: bool = False,
        booking_id: UUID | None = None,
        service_id: UUID | None = None,
        addon_ids: list[UUID] | None = None,
        requester_id: UUID | None = None,
    ) -> ProposalOutcome:
        """
        Create (booking_id=None) or reschedule/resize (booking_id set) a booking.

        Args:
            principal: Authenticated caller
            resource_id: Target resource (may differ from the booking's current one)
            target_date: Target date
            start: Start clock time
            end: End clock time
            force: Persist even if it overlaps other bookings (staff only)
            booking_id: Existing booking to reschedule
            service_id: Service of a new booking (required when creating)
            addon_ids: Add-ons of a new booking
            requester_id: Client the booking is for (staff only; defaults to principal)

        Returns:
            Accepted(booking) or Rejected(conflicting_booking_id)

        Raises:
            InvalidTimeFormat / InvalidDuration: Bad times
            ResourceNotFound: Unknown resource
            Unauthorized: force or on-behalf booking without staff capability
            ResourceUnavailable: Resource off on target_date
            BookingNotFound / BookingNotMutable: Bad reschedule target
            BookingLimitExceeded: Per-client daily limit (non-staff creates)
            TransientError: Transaction failed twice
        """
        start_minutes = to_minutes(start)
        end_minutes = to_minutes(end)
        if end_minutes <= start_minutes:
            raise InvalidDuration(
                "Booking end must be after its start",
                {"start_time": str(start), "end_time": str(end)},
            )
        if end_minutes >= MINUTES_PER_DAY:
            raise InvalidTimeFormat(
                "Bookings must end before midnight", {"end_time": format_minutes(end_minutes)}
            )
        if booking_id is None and service_id is None:
            raise ValueError("service_id is required to create a booking")

        trace_id = f"{resource_id}_{target_date.isoformat()}_{format_minutes(start_minutes)}"
        logger.info(
            f"[{trace_id}] Proposing booking "
            f"{format_minutes(start_minutes)}-{format_minutes(end_minutes)} (force={force})",
            extra={
                "trace_id": trace_id,
                "resource_id": str(resource_id),
                "booking_id": str(booking_id) if booking_id else None,
            },
        )

        # Pre-transaction checks: no booking rows are read here
        constraints = await self._constraints.get_constraints(resource_id, target_date, target_date)
        business_id = constraints.business_id

        is_staff = await self._capabilities.is_staff_for_business(principal, business_id)
        if force and not is_staff:
            logger.warning(
                f"[{trace_id}] Force override refused: principal {principal.id} is not staff",
                extra={"trace_id": trace_id, "business_id": str(business_id)},
            )
            raise Unauthorized(
                "Force override requires staff capability for this business",
                {"business_id": str(business_id)},
            )
        if requester_id is not None and requester_id != principal.id and not is_staff:
            raise Unauthorized(
                "Only staff may book on behalf of another client",
                {"business_id": str(business_id)},
            )

        day = constraints.for_day(target_date)
        if day.day_off:
            logger.info(
                f"[{trace_id}] Resource unavailable on {target_date} ({day.reason})",
                extra={"trace_id": trace_id, "resource_id": str(resource_id)},
            )
            raise ResourceUnavailable(
                "The resource is not working on the requested date",
                {
                    "resource_id": str(resource_id),
                    "date": target_date.isoformat(),
                    "reason": day.reason,
                },
            )

        async def attempt() -> ProposalOutcome:
            return await self._write_booking(
                trace_id=trace_id,
                principal=principal,
                is_staff=is_staff,
                business_id=business_id,
                resource_id=resource_id,
                target_date=target_date,
                start_minutes=start_minutes,
                end_minutes=end_minutes,
                force=force,
                booking_id=booking_id,
                service_id=service_id,
                addon_ids=addon_ids or [],
                requester_id=requester_id or principal.id,
            )

        outcome = await self._run_with_retry(trace_id, attempt)

        if isinstance(outcome, Accepted):
            # DB is committed: propagation failures never undo the booking
            await self._publisher.on_booking_mutated(
                resource_id, target_date, outcome.booking, outcome.change_kind
            )

        return outcome

    async def propose_from_catalog(
        self,
        principal: Principal,
        resource_id: UUID,
        service_id: UUID,
        addon_ids: list[UUID] | None,
        target_date: date,
        start: time | str,
        force: bool = False,
        requester_id: UUID | None = None,
    ) -> ProposalOutcome:
        """ProposeBooking: end = start + service duration + add-on durations."""
        duration = await self._catalog.resolve_duration(service_id, addon_ids)
        start_minutes = to_minutes(start)
        end_minutes = start_minutes + duration
        if end_minutes >= MINUTES_PER_DAY:
            raise InvalidDuration(
                "The service does not fit before midnight",
                {"start_time": format_minutes(start_minutes), "duration_minutes": duration},
            )

        return await self.propose_booking(
            principal,
            resource_id,
            target_date,
            from_minutes(start_minutes),
            from_minutes(end_minutes),
            force=force,
            service_id=service_id,
            addon_ids=addon_ids,
            requester_id=requester_id,
        )

    async def reschedule(
        self,
        principal: Principal,
        booking_id: UUID,
        target_date: date,
        start: time | str,
        end: time | str | None = None,
        resource_id: UUID | None = None,
        force: bool = False,
    ) -> ProposalOutcome:
        """
        Move (and optionally resize) an existing booking.

        Without ``end`` the duration is recomputed from the catalog for the
        booking's service and add-ons. An explicit ``end`` that differs from
        the catalog duration is a resize and needs staff capability. Without
        ``resource_id`` the booking stays on its current resource.
        """
        async with self._database.session() as session:
            current = await get_booking(session, booking_id)
        if current is None:
            raise BookingNotFound(f"Booking {booking_id} not found", {"booking_id": str(booking_id)})

        if end is None or not await self._capabilities.is_staff_for_business(
            principal, current.business_id
        ):
            duration = await self._catalog.resolve_duration(current.service_id, list(current.addon_ids or []))
            end_minutes = to_minutes(start) + duration
            if end is not None and to_minutes(end) != end_minutes:
                logger.warning(
                    f"Resize of booking {booking_id} refused: principal {principal.id} is not staff",
                    extra={"booking_id": str(booking_id), "business_id": str(current.business_id)},
                )
                raise Unauthorized(
                    "Only staff may change the duration of a booking",
                    {"booking_id": str(booking_id), "duration_minutes": duration},
                )
            if end_minutes >= MINUTES_PER_DAY:
                raise InvalidDuration(
                    "The service does not fit before midnight",
                    {"duration_minutes": duration},
                )
            end = from_minutes(end_minutes)

        return await self.propose_booking(
            principal,
            resource_id or current.resource_id,
            target_date,
            start,
            end,
            force=force,
            booking_id=booking_id,
        )

    async def cancel_booking(self, principal: Principal, booking_id: UUID) -> Booking:
        """booked -> cancelled. Requester or staff."""
        return await self._change_status(principal, booking_id, BookingStatus.CANCELLED)

    async def finish_booking(self, principal: Principal, booking_id: UUID) -> Booking:
        """booked -> finished. Staff only."""
        return await self._change_status(principal, booking_id, BookingStatus.FINISHED)

    # =========================================================================
    # Transaction internals
    # =========================================================================

    async def _run_with_retry(self, trace_id: str, attempt: Callable[[], Awaitable[T]]) -> T:
        last_error: BaseException | None = None

        for attempt_number in range(1 + self._retries):
            try:
                return await asyncio.wait_for(attempt(), timeout=self._timeout)
            except (DBAPIError, *TRANSIENT_ERRORS) as e:
                if not is_transient(e):
                    raise
                last_error = e
                logger.warning(
                    f"[{trace_id}] Booking transaction attempt {attempt_number + 1} failed: "
                    f"{type(e).__name__}: {e}",
                    extra={"trace_id": trace_id},
                )

        logger.error(
            f"[{trace_id}] Booking transaction failed after {1 + self._retries} attempts",
            extra={"trace_id": trace_id},
        )
        raise TransientError(
            "The booking could not be saved right now, please retry",
            {"attempts": 1 + self._retries, "error": str(last_error)},
        ) from last_error

    async def _begin_serializable(self, session: AsyncSession) -> None:
        await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
        await session.execute(text(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'"))

    async def _write_booking(
        self,
        trace_id: str,
        principal: Principal,
        is_staff: bool,
        business_id: UUID,
        resource_id: UUID,
        target_date: date,
        start_minutes: int,
        end_minutes: int,
        force: bool,
        booking_id: UUID | None,
        service_id: UUID | None,
        addon_ids: list[UUID],
        requester_id: UUID,
    ) -> ProposalOutcome:
        async with self._database.session() as session:
            await self._begin_serializable(session)

            existing = None
            if booking_id is not None:
                existing = await get_booking(session, booking_id, lock=True)
                if existing is None:
                    raise BookingNotFound(
                        f"Booking {booking_id} not found", {"booking_id": str(booking_id)}
                    )
                if existing.status in TERMINAL_STATUSES:
                    raise BookingNotMutable(
                        f"Booking is {existing.status.value} and can no longer be changed",
                        {"booking_id": str(booking_id), "status": existing.status.value},
                    )
                if existing.business_id != business_id:
                    raise ResourceUnavailable(
                        "A booking cannot be moved to another business's resource",
                        {"booking_id": str(booking_id), "resource_id": str(resource_id)},
                    )
                if not is_staff and existing.requester_id != principal.id:
                    raise Unauthorized(
                        "Only the requester or staff may reschedule this booking",
                        {"booking_id": str(booking_id)},
                    )

            validation = await validate_slot_availability(
                session,
                resource_id,
                target_date,
                start_minutes,
                end_minutes,
                exclude_booking_id=booking_id,
            )

            forced_over: list[UUID] = []
            if not validation["available"]:
                if not force:
                    await session.rollback()
                    logger.info(
                        f"[{trace_id}] Rejected: overlaps {validation['conflicting_booking_id']}",
                        extra={"trace_id": trace_id, "resource_id": str(resource_id)},
                    )
                    return Rejected(
                        conflicting_booking_id=validation["conflicting_booking_id"],
                        conflicting_booking_ids=list(validation["conflicting_booking_ids"]),
                        error_message=validation["error_message"],
                    )

                forced_over = list(validation["conflicting_booking_ids"])
                logger.warning(
                    f"[{trace_id}] Force override: persisting overlap with {len(forced_over)} booking(s)",
                    extra={"trace_id": trace_id, "resource_id": str(resource_id)},
                )

            if existing is None:
                if not is_staff:
                    limit = await validate_daily_limit(
                        session,
                        requester_id,
                        service_id,
                        target_date,
                        self._max_per_service_per_day,
                    )
                    if not limit["valid"]:
                        raise BookingLimitExceeded(
                            limit["error_message"],
                            {
                                "current_count": limit["current_count"],
                                "max_allowed": limit["max_allowed"],
                            },
                        )

                booking = Booking(
                    business_id=business_id,
                    resource_id=resource_id,
                    service_id=service_id,
                    requester_id=requester_id,
                    addon_ids=list(addon_ids),
                    date=target_date,
                    start_time=from_minutes(start_minutes),
                    end_time=from_minutes(end_minutes),
                    status=BookingStatus.BOOKED,
                )
                session.add(booking)
                change_kind = ChangeKind.CREATED
            else:
                booking = existing
                apply_reschedule(
                    booking,
                    resource_id,
                    target_date,
                    from_minutes(start_minutes),
                    from_minutes(end_minutes),
                    self._clock(),
                )
                change_kind = ChangeKind.UPDATED

            await session.flush()
            await session.commit()
            await session.refresh(booking)

            logger.info(
                f"[{trace_id}] Booking committed ({change_kind.value})",
                extra={
                    "trace_id": trace_id,
                    "booking_id": str(booking.id),
                    "resource_id": str(resource_id),
                },
            )
            return Accepted(booking=booking, change_kind=change_kind, forced_over=forced_over)

    async def _change_status(
        self, principal: Principal, booking_id: UUID, new_status: BookingStatus
    ) -> Booking:
        trace_id = f"{booking_id}_{new_status.value}"

        async def attempt() -> Booking:
            async with self._database.session() as session:
                await self._begin_serializable(session)

                booking = await get_booking(session, booking_id, lock=True)
                if booking is None:
                    raise BookingNotFound(
                        f"Booking {booking_id} not found", {"booking_id": str(booking_id)}
                    )
                if booking.status in TERMINAL_STATUSES:
                    raise BookingNotMutable(
                        f"Booking is {booking.status.value} and can no longer be changed",
                        {"booking_id": str(booking_id), "status": booking.status.value},
                    )

                is_staff = await self._capabilities.is_staff_for_business(principal, booking.business_id)
                allowed = is_staff or (
                    new_status == BookingStatus.CANCELLED and booking.requester_id == principal.id
                )
                if not allowed:
                    raise Unauthorized(
                        f"Not allowed to mark this booking as {new_status.value}",
                        {"booking_id": str(booking_id)},
                    )

                booking.status = new_status
                await session.commit()
                await session.refresh(booking)
                return booking

        booking = await self._run_with_retry(trace_id, attempt)

        logger.info(
            f"[{trace_id}] Booking {new_status.value}",
            extra={"trace_id": trace_id, "booking_id": str(booking_id)},
        )

        change_kind = ChangeKind.CANCELLED if new_status == BookingStatus.CANCELLED else ChangeKind.FINISHED
        await self._publisher.on_booking_mutated(booking.resource_id, booking.date, booking, change_kind)
        return booking


def apply_reschedule(
    booking: Booking,
    resource_id: UUID,
    target_date: date,
    start_time: time,
    end_time: time,
    changed_at: datetime,
) -> bool:
    """
    Move a booking and record its immediately-prior placement.

    History holds only the last placement: a second reschedule overwrites it.
    A move that changes nothing leaves history untouched.

    Returns:
        True if the booking's placement changed
    """
    unchanged = (
        booking.resource_id == resource_id
        and booking.date == target_date
        and booking.start_time == start_time
        and booking.end_time == end_time
    )
    if unchanged:
        return False

    booking.previous_date = booking.date
    booking.previous_start_time = booking.start_time
    booking.previous_end_time = booking.end_time
    booking.changed_at = changed_at

    booking.resource_id = resource_id
    booking.date = target_date
    booking.start_time = start_time
    booking.end_time = end_time
    return True
