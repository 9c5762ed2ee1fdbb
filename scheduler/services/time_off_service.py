"""
Time-off and vacation management.

Time-off blocks are intra-day (date, start, end); vacations are whole-day
inclusive date ranges. Both are edited only by the resource's own principal
or the business owner. Each committed change is broadcast to the business
calendar channel.
"""

import logging
from datetime import date, time
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Database
from database.models import Resource, TimeOffBlock, Vacation
from scheduler.errors import InvalidDuration, ResourceNotFound, Unauthorized
from scheduler.identity import CapabilityChecker, Principal
from scheduler.services.change_propagation import ChangeKind, ChangePublisher
from scheduler.utils.time_model import format_minutes, from_minutes, to_minutes

logger = logging.getLogger(__name__)


def time_off_snapshot(block: TimeOffBlock) -> dict[str, Any]:
    return {
        "id": str(block.id),
        "resource_id": str(block.resource_id),
        "date": block.date.isoformat(),
        "start_time": format_minutes(to_minutes(block.start_time)),
        "end_time": format_minutes(to_minutes(block.end_time)),
        "reason": block.reason,
    }


def vacation_snapshot(vacation: Vacation) -> dict[str, Any]:
    return {
        "id": str(vacation.id),
        "resource_id": str(vacation.resource_id),
        "start_date": vacation.start_date.isoformat(),
        "end_date": vacation.end_date.isoformat(),
        "reason": vacation.reason,
    }


def _parse_range(start: time | str, end: time | str) -> tuple[time, time]:
    start_minutes = to_minutes(start)
    end_minutes = to_minutes(end)
    if end_minutes <= start_minutes:
        raise InvalidDuration(
            "Time-off end must be after its start",
            {"start_time": str(start), "end_time": str(end)},
        )
    if end_minutes >= 1440:
        raise InvalidDuration(
            "Time-off must end before midnight", {"end_time": str(end)}
        )
    return from_minutes(start_minutes), from_minutes(end_minutes)


def _check_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidDuration(
            "Vacation end date must not be before its start date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


class TimeOffService:
    """
    CRUD for time-off blocks and vacations.

    Example:
        >>> service = TimeOffService(database, capabilities, publisher)
        >>> block = await service.add_time_off(principal, resource_id, day, "13:00", "14:00")
    """

    def __init__(
        self,
        database: Database,
        capabilities: CapabilityChecker,
        publisher: ChangePublisher,
    ) -> None:
        self._database = database
        self._capabilities = capabilities
        self._publisher = publisher

    # ========================================================================
    # Time-off blocks
    # ========================================================================

    async def add_time_off(
        self,
        principal: Principal,
        resource_id: UUID,
        target_date: date,
        start: time | str,
        end: time | str,
        reason: str | None = None,
    ) -> TimeOffBlock:
        start_time, end_time = _parse_range(start, end)
        await self._authorize(principal, resource_id)

        async with self._database.session() as session:
            resource = await self._get_resource(session, resource_id)
            block = TimeOffBlock(
                resource_id=resource_id,
                date=target_date,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
            )
            session.add(block)
            await session.commit()
            await session.refresh(block)
            business_id = resource.business_id

        logger.info(
            f"Time-off added: {target_date} {format_minutes(to_minutes(start_time))}"
            f"-{format_minutes(to_minutes(end_time))}",
            extra={"resource_id": str(resource_id), "business_id": str(business_id)},
        )
        await self._publisher.on_time_off_changed(
            business_id, resource_id, target_date, ChangeKind.TIME_OFF_ADDED, time_off_snapshot(block)
        )
        return block

    async def update_time_off(
        self,
        principal: Principal,
        time_off_id: UUID,
        target_date: date | None = None,
        start: time | str | None = None,
        end: time | str | None = None,
        reason: str | None = None,
    ) -> TimeOffBlock:
        async with self._database.session() as session:
            block = await self._get_time_off(session, time_off_id)
            await self._authorize(principal, block.resource_id)

            start_time, end_time = _parse_range(
                start if start is not None else block.start_time,
                end if end is not None else block.end_time,
            )
            block.date = target_date or block.date
            block.start_time = start_time
            block.end_time = end_time
            if reason is not None:
                block.reason = reason

            resource = await self._get_resource(session, block.resource_id)
            await session.commit()
            await session.refresh(block)

        logger.info(f"Time-off updated: {time_off_id}", extra={"resource_id": str(block.resource_id)})
        await self._publisher.on_time_off_changed(
            resource.business_id,
            block.resource_id,
            block.date,
            ChangeKind.TIME_OFF_UPDATED,
            time_off_snapshot(block),
        )
        return block

    async def delete_time_off(self, principal: Principal, time_off_id: UUID) -> None:
        async with self._database.session() as session:
            block = await self._get_time_off(session, time_off_id)
            await self._authorize(principal, block.resource_id)
            resource = await self._get_resource(session, block.resource_id)
            payload = time_off_snapshot(block)
            await session.delete(block)
            await session.commit()

        logger.info(f"Time-off deleted: {time_off_id}", extra={"resource_id": str(block.resource_id)})
        await self._publisher.on_time_off_changed(
            resource.business_id, block.resource_id, block.date, ChangeKind.TIME_OFF_DELETED, payload
        )

    # ========================================================================
    # Vacations
    # ========================================================================

    async def add_vacation(
        self,
        principal: Principal,
        resource_id: UUID,
        start_date: date,
        end_date: date,
        reason: str | None = None,
    ) -> Vacation:
        _check_dates(start_date, end_date)
        await self._authorize(principal, resource_id)

        async with self._database.session() as session:
            resource = await self._get_resource(session, resource_id)
            vacation = Vacation(
                resource_id=resource_id,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
            )
            session.add(vacation)
            await session.commit()
            await session.refresh(vacation)

        logger.info(
            f"Vacation added: {start_date} to {end_date}",
            extra={"resource_id": str(resource_id), "business_id": str(resource.business_id)},
        )
        await self._publisher.on_time_off_changed(
            resource.business_id, resource_id, None, ChangeKind.VACATION_ADDED, vacation_snapshot(vacation)
        )
        return vacation

    async def update_vacation(
        self,
        principal: Principal,
        vacation_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        reason: str | None = None,
    ) -> Vacation:
        async with self._database.session() as session:
            vacation = await self._get_vacation(session, vacation_id)
            await self._authorize(principal, vacation.resource_id)

            new_start = start_date or vacation.start_date
            new_end = end_date or vacation.end_date
            _check_dates(new_start, new_end)
            vacation.start_date = new_start
            vacation.end_date = new_end
            if reason is not None:
                vacation.reason = reason

            resource = await self._get_resource(session, vacation.resource_id)
            await session.commit()
            await session.refresh(vacation)

        logger.info(f"Vacation updated: {vacation_id}", extra={"resource_id": str(vacation.resource_id)})
        await self._publisher.on_time_off_changed(
            resource.business_id,
            vacation.resource_id,
            None,
            ChangeKind.VACATION_UPDATED,
            vacation_snapshot(vacation),
        )
        return vacation

    async def delete_vacation(self, principal: Principal, vacation_id: UUID) -> None:
        async with self._database.session() as session:
            vacation = await self._get_vacation(session, vacation_id)
            await self._authorize(principal, vacation.resource_id)
            resource = await self._get_resource(session, vacation.resource_id)
            payload = vacation_snapshot(vacation)
            await session.delete(vacation)
            await session.commit()

        logger.info(f"Vacation deleted: {vacation_id}", extra={"resource_id": str(vacation.resource_id)})
        await self._publisher.on_time_off_changed(
            resource.business_id, vacation.resource_id, None, ChangeKind.VACATION_DELETED, payload
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _authorize(self, principal: Principal, resource_id: UUID) -> None:
        if not await self._capabilities.is_owner_of_resource(principal, resource_id):
            logger.warning(
                f"Principal {principal.id} may not edit time off of resource {resource_id}",
                extra={"resource_id": str(resource_id)},
            )
            raise Unauthorized(
                "Only the resource itself or the business owner may change its time off",
                {"resource_id": str(resource_id)},
            )

    @staticmethod
    async def _get_resource(session: AsyncSession, resource_id: UUID) -> Resource:
        result = await session.execute(select(Resource).where(Resource.id == resource_id))
        resource = result.scalar_one_or_none()
        if resource is None:
            raise ResourceNotFound(f"Resource {resource_id} not found", {"resource_id": str(resource_id)})
        return resource

    @staticmethod
    async def _get_time_off(session: AsyncSession, time_off_id: UUID) -> TimeOffBlock:
        result = await session.execute(select(TimeOffBlock).where(TimeOffBlock.id == time_off_id))
        block = result.scalar_one_or_none()
        if block is None:
            raise ResourceNotFound(f"Time-off {time_off_id} not found", {"time_off_id": str(time_off_id)})
        return block

    @staticmethod
    async def _get_vacation(session: AsyncSession, vacation_id: UUID) -> Vacation:
        result = await session.execute(select(Vacation).where(Vacation.id == vacation_id))
        vacation = result.scalar_one_or_none()
        if vacation is None:
            raise ResourceNotFound(f"Vacation {vacation_id} not found", {"vacation_id": str(vacation_id)})
        return vacation
