"""
Catalog access for service and add-on durations.

The catalog is authoritative for durations: a booking's length is always
service duration + sum of selected add-on durations, never a client value.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Database
from database.models import Service, ServiceAddon
from scheduler.errors import ResourceNotFound

logger = logging.getLogger(__name__)


class CatalogService:
    """Resolves service and add-on durations."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_service(self, service_id: UUID, session: AsyncSession | None = None) -> Service:
        if session is None:
            async with self._database.session() as own_session:
                return await self._get_service(own_session, service_id)
        return await self._get_service(session, service_id)

    async def resolve_duration(
        self,
        service_id: UUID,
        addon_ids: list[UUID] | None = None,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Total duration in minutes for a service plus add-ons.

        Duplicate add-on ids are counted once.

        Raises:
            ResourceNotFound: If the service or any add-on does not exist
        """
        if session is None:
            async with self._database.session() as own_session:
                return await self._resolve_duration(own_session, service_id, addon_ids or [])
        return await self._resolve_duration(session, service_id, addon_ids or [])

    async def _get_service(self, session: AsyncSession, service_id: UUID) -> Service:
        result = await session.execute(select(Service).where(Service.id == service_id))
        service = result.scalar_one_or_none()
        if service is None:
            raise ResourceNotFound(
                f"Service {service_id} not found", {"service_id": str(service_id)}
            )
        return service

    async def _resolve_duration(
        self, session: AsyncSession, service_id: UUID, addon_ids: list[UUID]
    ) -> int:
        service = await self._get_service(session, service_id)
        total = service.duration_minutes

        unique_ids = set(addon_ids)
        if unique_ids:
            result = await session.execute(
                select(ServiceAddon).where(ServiceAddon.id.in_(unique_ids))
            )
            addons = list(result.scalars().all())

            missing = unique_ids - {a.id for a in addons}
            if missing:
                raise ResourceNotFound(
                    "One or more add-ons were not found",
                    {"missing_addon_ids": sorted(str(m) for m in missing)},
                )

            extra = sum(a.duration_minutes for a in addons)
            logger.debug(
                f"Add-ons ({len(addons)}) add {extra} min to service {service_id}"
            )
            total += extra

        return total
