"""
Identity collaborator: authenticated principal and capability checks.

Token decoding lives in the API layer (api/dependencies.py); this module
answers "may this principal do X" against the businesses/resources tables.
"""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Database
from database.models import Business, Resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    id: UUID


class CapabilityChecker(Protocol):
    async def is_staff_for_business(self, principal: Principal, business_id: UUID) -> bool: ...

    async def is_owner_of_resource(self, principal: Principal, resource_id: UUID) -> bool: ...

    async def is_business_owner(self, principal: Principal, business_id: UUID) -> bool: ...


class DatabaseCapabilityChecker:
    """
    Capability checks backed by the businesses/resources tables.

    - business owner: ``businesses.owner_id``
    - staff: the owner, or the principal of any active resource of the business
    - resource owner: the resource's own principal, or the business owner
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def is_business_owner(self, principal: Principal, business_id: UUID) -> bool:
        async with self._database.session() as session:
            return await self._is_owner(session, principal, business_id)

    async def is_staff_for_business(self, principal: Principal, business_id: UUID) -> bool:
        async with self._database.session() as session:
            if await self._is_owner(session, principal, business_id):
                return True

            result = await session.execute(
                select(Resource.id)
                .where(Resource.business_id == business_id)
                .where(Resource.principal_id == principal.id)
                .where(Resource.is_active.is_(True))
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def is_owner_of_resource(self, principal: Principal, resource_id: UUID) -> bool:
        async with self._database.session() as session:
            result = await session.execute(select(Resource).where(Resource.id == resource_id))
            resource = result.scalar_one_or_none()
            if resource is None:
                return False
            if resource.principal_id == principal.id:
                return True
            return await self._is_owner(session, principal, resource.business_id)

    @staticmethod
    async def _is_owner(session: AsyncSession, principal: Principal, business_id: UUID) -> bool:
        result = await session.execute(
            select(Business.owner_id).where(Business.id == business_id)
        )
        owner_id = result.scalar_one_or_none()
        return owner_id is not None and owner_id == principal.id
