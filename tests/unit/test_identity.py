"""Unit tests for identity.py - capability checks."""

from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from scheduler.identity import DatabaseCapabilityChecker, Principal
from tests.helpers import FakeDatabase, scalar_result

OWNER = Principal(UUID("550e8400-e29b-41d4-a716-44665544ffff"))
EMPLOYEE = Principal(UUID("550e8400-e29b-41d4-a716-44665544bbbb"))
STRANGER = Principal(UUID("550e8400-e29b-41d4-a716-44665544dddd"))


def checker_with(*results):
    database = FakeDatabase()
    database.session_obj.execute = AsyncMock(side_effect=list(results))
    return DatabaseCapabilityChecker(database), database


class TestIsStaffForBusiness:
    @pytest.mark.asyncio
    async def test_owner_is_staff(self, business_id):
        checker, database = checker_with(scalar_result(OWNER.id))

        assert await checker.is_staff_for_business(OWNER, business_id) is True
        assert database.session_obj.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_active_resource_principal_is_staff(self, business_id, resource_id):
        checker, _ = checker_with(scalar_result(OWNER.id), scalar_result(resource_id))

        assert await checker.is_staff_for_business(EMPLOYEE, business_id) is True

    @pytest.mark.asyncio
    async def test_stranger_is_not_staff(self, business_id):
        checker, _ = checker_with(scalar_result(OWNER.id), scalar_result(None))

        assert await checker.is_staff_for_business(STRANGER, business_id) is False


class TestIsOwnerOfResource:
    @pytest.mark.asyncio
    async def test_resource_principal(self, business_id, resource_id):
        resource = MagicMock(principal_id=EMPLOYEE.id, business_id=business_id)
        checker, _ = checker_with(scalar_result(resource))

        assert await checker.is_owner_of_resource(EMPLOYEE, resource_id) is True

    @pytest.mark.asyncio
    async def test_business_owner(self, business_id, resource_id):
        resource = MagicMock(principal_id=EMPLOYEE.id, business_id=business_id)
        checker, _ = checker_with(scalar_result(resource), scalar_result(OWNER.id))

        assert await checker.is_owner_of_resource(OWNER, resource_id) is True

    @pytest.mark.asyncio
    async def test_other_employee(self, business_id, resource_id):
        resource = MagicMock(principal_id=EMPLOYEE.id, business_id=business_id)
        checker, _ = checker_with(scalar_result(resource), scalar_result(OWNER.id))

        assert await checker.is_owner_of_resource(STRANGER, resource_id) is False

    @pytest.mark.asyncio
    async def test_unknown_resource(self, resource_id):
        checker, _ = checker_with(scalar_result(None))

        assert await checker.is_owner_of_resource(OWNER, resource_id) is False


class TestIsBusinessOwner:
    @pytest.mark.asyncio
    async def test_unknown_business(self, business_id):
        checker, _ = checker_with(scalar_result(None))

        assert await checker.is_business_owner(OWNER, business_id) is False
