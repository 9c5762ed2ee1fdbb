"""
Availability endpoints.

- GET /api/resources/{resource_id}/availability: labelled slots for one date
- GET /api/resources/{resource_id}/unavailable-days: day-off or full dates of a month
"""

import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import CurrentPrincipal, get_availability_service
from scheduler.services.availability_service import AvailabilityService, enumerate_start_times

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/resources", tags=["availability"])


@router.get("/{resource_id}/availability")
async def get_availability(
    resource_id: UUID,
    principal: CurrentPrincipal,
    target_date: Annotated[date, Query(alias="date")],
    service_id: UUID,
    addon_ids: Annotated[list[UUID] | None, Query()] = None,
    availability: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """ComputeAvailability(resource, date, service, add-ons)."""
    slots, duration = await availability.compute_availability(
        resource_id, target_date, service_id, addon_ids or []
    )
    return {
        "resource_id": str(resource_id),
        "date": target_date.isoformat(),
        "duration_minutes": duration,
        "slots": [slot.to_dict() for slot in slots],
        "start_times": enumerate_start_times(slots, duration),
    }


@router.get("/{resource_id}/unavailable-days")
async def get_unavailable_days(
    resource_id: UUID,
    principal: CurrentPrincipal,
    month: Annotated[str, Query(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")],
    availability: AvailabilityService = Depends(get_availability_service),
) -> dict:
    year, month_number = (int(part) for part in month.split("-"))
    days = await availability.unavailable_days(resource_id, year, month_number)
    return {
        "resource_id": str(resource_id),
        "month": month,
        "unavailable_days": [d.isoformat() for d in sorted(days)],
    }
