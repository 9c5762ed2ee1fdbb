"""
Unit tests for time_off_service.py - time-off and vacation CRUD.

Tests coverage:
- Validation of ranges before any I/O
- Resource-or-owner authorization
- Commit then broadcast (vacations carry no single date)
- Unknown ids
"""

from datetime import date, time
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from database.models import TimeOffBlock, Vacation
from scheduler.errors import InvalidDuration, ResourceNotFound, Unauthorized
from scheduler.identity import Principal
from scheduler.services.change_propagation import ChangeKind
from scheduler.services.time_off_service import TimeOffService
from tests.helpers import FakeDatabase, scalar_result

TIME_OFF_ID = UUID("cccccccc-0000-0000-0000-000000000003")
VACATION_ID = UUID("eeeeeeee-0000-0000-0000-000000000005")
PRINCIPAL = Principal(UUID("550e8400-e29b-41d4-a716-44665544bbbb"))


@pytest.fixture
def resource(resource_id, business_id):
    return MagicMock(id=resource_id, business_id=business_id)


@pytest.fixture
def capabilities():
    checker = MagicMock()
    checker.is_owner_of_resource = AsyncMock(return_value=True)
    return checker


@pytest.fixture
def publisher():
    publisher = MagicMock()
    publisher.on_time_off_changed = AsyncMock(return_value=True)
    return publisher


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def service(database, capabilities, publisher):
    return TimeOffService(database, capabilities, publisher)


def existing_time_off(resource_id, monday):
    block = MagicMock()
    block.id = TIME_OFF_ID
    block.resource_id = resource_id
    block.date = monday
    block.start_time = time(13, 0)
    block.end_time = time(14, 0)
    block.reason = "Lunch"
    return block


def existing_vacation(resource_id):
    vacation = MagicMock()
    vacation.id = VACATION_ID
    vacation.resource_id = resource_id
    vacation.start_date = date(2026, 3, 9)
    vacation.end_date = date(2026, 3, 13)
    vacation.reason = None
    return vacation


# ============================================================================
# Time-off blocks
# ============================================================================


class TestTimeOff:
    """Tests for intra-day time-off blocks."""

    @pytest.mark.asyncio
    async def test_add_time_off(self, service, database, publisher, resource, resource_id, business_id, monday):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(resource))

        block = await service.add_time_off(PRINCIPAL, resource_id, monday, "13:00", "14:00", "Lunch")

        assert isinstance(block, TimeOffBlock)
        assert block.start_time == time(13, 0)
        assert block.end_time == time(14, 0)
        database.session_obj.add.assert_called_once_with(block)
        database.session_obj.commit.assert_awaited_once()

        args = publisher.on_time_off_changed.await_args.args
        assert args[:4] == (business_id, resource_id, monday, ChangeKind.TIME_OFF_ADDED)
        assert args[4]["start_time"] == "13:00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start, end", [("14:00", "13:00"), ("13:00", "13:00"), ("23:00", "24:00")])
    async def test_bad_range_fails_before_io(self, service, database, capabilities, resource_id, monday, start, end):
        with pytest.raises(InvalidDuration):
            await service.add_time_off(PRINCIPAL, resource_id, monday, start, end)

        capabilities.is_owner_of_resource.assert_not_awaited()
        assert database.sessions_opened == 0

    @pytest.mark.asyncio
    async def test_add_requires_resource_owner(self, service, database, capabilities, publisher, resource_id, monday):
        capabilities.is_owner_of_resource = AsyncMock(return_value=False)

        with pytest.raises(Unauthorized):
            await service.add_time_off(PRINCIPAL, resource_id, monday, "13:00", "14:00")

        assert database.sessions_opened == 0
        publisher.on_time_off_changed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_for_unknown_resource(self, service, database, publisher, resource_id, monday):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(None))

        with pytest.raises(ResourceNotFound):
            await service.add_time_off(PRINCIPAL, resource_id, monday, "13:00", "14:00")

        database.session_obj.commit.assert_not_awaited()
        publisher.on_time_off_changed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_keeps_unspecified_fields(self, service, database, publisher, resource, resource_id, monday):
        block = existing_time_off(resource_id, monday)
        database.session_obj.execute = AsyncMock(side_effect=[scalar_result(block), scalar_result(resource)])

        updated = await service.update_time_off(PRINCIPAL, TIME_OFF_ID, end="14:30")

        assert updated.start_time == time(13, 0)
        assert updated.end_time == time(14, 30)
        assert updated.date == monday
        assert updated.reason == "Lunch"
        assert publisher.on_time_off_changed.await_args.args[3] == ChangeKind.TIME_OFF_UPDATED

    @pytest.mark.asyncio
    async def test_update_to_inverted_range(self, service, database, resource_id, monday):
        block = existing_time_off(resource_id, monday)
        database.session_obj.execute = AsyncMock(return_value=scalar_result(block))

        with pytest.raises(InvalidDuration):
            await service.update_time_off(PRINCIPAL, TIME_OFF_ID, start="15:00")

        database.session_obj.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_unknown_time_off(self, service, database):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(None))

        with pytest.raises(ResourceNotFound) as exc_info:
            await service.update_time_off(PRINCIPAL, TIME_OFF_ID, end="15:00")

        assert exc_info.value.details == {"time_off_id": str(TIME_OFF_ID)}

    @pytest.mark.asyncio
    async def test_delete_time_off(self, service, database, publisher, resource, resource_id, monday):
        block = existing_time_off(resource_id, monday)
        database.session_obj.execute = AsyncMock(side_effect=[scalar_result(block), scalar_result(resource)])

        await service.delete_time_off(PRINCIPAL, TIME_OFF_ID)

        database.session_obj.delete.assert_awaited_once_with(block)
        args = publisher.on_time_off_changed.await_args.args
        assert args[2] == monday
        assert args[3] == ChangeKind.TIME_OFF_DELETED
        assert args[4]["id"] == str(TIME_OFF_ID)

    @pytest.mark.asyncio
    async def test_delete_by_stranger(self, service, database, capabilities, resource_id, monday):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(existing_time_off(resource_id, monday)))
        capabilities.is_owner_of_resource = AsyncMock(return_value=False)

        with pytest.raises(Unauthorized):
            await service.delete_time_off(PRINCIPAL, TIME_OFF_ID)

        database.session_obj.delete.assert_not_awaited()


# ============================================================================
# Vacations
# ============================================================================


class TestVacations:
    """Tests for whole-day vacation ranges."""

    @pytest.mark.asyncio
    async def test_add_vacation(self, service, database, publisher, resource, resource_id, business_id):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(resource))

        vacation = await service.add_vacation(
            PRINCIPAL, resource_id, date(2026, 3, 9), date(2026, 3, 13), "Holiday"
        )

        assert isinstance(vacation, Vacation)
        args = publisher.on_time_off_changed.await_args.args
        assert args[:4] == (business_id, resource_id, None, ChangeKind.VACATION_ADDED)
        assert args[4]["end_date"] == "2026-03-13"

    @pytest.mark.asyncio
    async def test_single_day_vacation(self, service, database, resource, resource_id, monday):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(resource))

        vacation = await service.add_vacation(PRINCIPAL, resource_id, monday, monday)

        assert vacation.start_date == vacation.end_date == monday

    @pytest.mark.asyncio
    async def test_end_before_start(self, service, database, resource_id):
        with pytest.raises(InvalidDuration):
            await service.add_vacation(PRINCIPAL, resource_id, date(2026, 3, 13), date(2026, 3, 9))

        assert database.sessions_opened == 0

    @pytest.mark.asyncio
    async def test_update_vacation(self, service, database, publisher, resource, resource_id):
        vacation = existing_vacation(resource_id)
        database.session_obj.execute = AsyncMock(side_effect=[scalar_result(vacation), scalar_result(resource)])

        await service.update_vacation(PRINCIPAL, VACATION_ID, end_date=date(2026, 3, 20))

        assert vacation.start_date == date(2026, 3, 9)
        assert vacation.end_date == date(2026, 3, 20)
        assert publisher.on_time_off_changed.await_args.args[3] == ChangeKind.VACATION_UPDATED

    @pytest.mark.asyncio
    async def test_update_vacation_to_inverted_range(self, service, database, resource_id):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(existing_vacation(resource_id)))

        with pytest.raises(InvalidDuration):
            await service.update_vacation(PRINCIPAL, VACATION_ID, end_date=date(2026, 3, 1))

    @pytest.mark.asyncio
    async def test_delete_vacation(self, service, database, publisher, resource, resource_id):
        vacation = existing_vacation(resource_id)
        database.session_obj.execute = AsyncMock(side_effect=[scalar_result(vacation), scalar_result(resource)])

        await service.delete_vacation(PRINCIPAL, VACATION_ID)

        database.session_obj.delete.assert_awaited_once_with(vacation)
        assert publisher.on_time_off_changed.await_args.args[3] == ChangeKind.VACATION_DELETED

    @pytest.mark.asyncio
    async def test_delete_unknown_vacation(self, service, database):
        database.session_obj.execute = AsyncMock(return_value=scalar_result(None))

        with pytest.raises(ResourceNotFound):
            await service.delete_vacation(PRINCIPAL, VACATION_ID)
