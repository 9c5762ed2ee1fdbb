"""
Time-off and vacation endpoints.

Allowed for the resource's own principal or the business owner.
"""

import logging
from datetime import date as dt_date
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from api.dependencies import CurrentPrincipal, get_time_off_service
from scheduler.services.time_off_service import (
    TimeOffService,
    time_off_snapshot,
    vacation_snapshot,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["time-off"])


# =============================================================================
# Request Models
# =============================================================================


class TimeOffCreate(BaseModel):
    resource_id: UUID
    date: dt_date
    start_time: str = Field(..., description="HH:MM")
    end_time: str = Field(..., description="HH:MM")
    reason: str | None = Field(default=None, max_length=255)


class TimeOffUpdate(BaseModel):
    date: dt_date | None = None
    start_time: str | None = None
    end_time: str | None = None
    reason: str | None = Field(default=None, max_length=255)


class VacationCreate(BaseModel):
    resource_id: UUID
    start_date: dt_date
    end_date: dt_date
    reason: str | None = Field(default=None, max_length=255)


class VacationUpdate(BaseModel):
    start_date: dt_date | None = None
    end_date: dt_date | None = None
    reason: str | None = Field(default=None, max_length=255)


# =============================================================================
# Time-off blocks
# =============================================================================


@router.post("/time-off", status_code=status.HTTP_201_CREATED)
async def create_time_off(
    body: TimeOffCreate,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> dict:
    block = await service.add_time_off(
        principal, body.resource_id, body.date, body.start_time, body.end_time, body.reason
    )
    return time_off_snapshot(block)


@router.put("/time-off/{time_off_id}")
async def update_time_off(
    time_off_id: UUID,
    body: TimeOffUpdate,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> dict:
    block = await service.update_time_off(
        principal,
        time_off_id,
        target_date=body.date,
        start=body.start_time,
        end=body.end_time,
        reason=body.reason,
    )
    return time_off_snapshot(block)


@router.delete("/time-off/{time_off_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_off(
    time_off_id: UUID,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> Response:
    await service.delete_time_off(principal, time_off_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Vacations
# =============================================================================


@router.post("/vacations", status_code=status.HTTP_201_CREATED)
async def create_vacation(
    body: VacationCreate,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> dict:
    vacation = await service.add_vacation(
        principal, body.resource_id, body.start_date, body.end_date, body.reason
    )
    return vacation_snapshot(vacation)


@router.put("/vacations/{vacation_id}")
async def update_vacation(
    vacation_id: UUID,
    body: VacationUpdate,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> dict:
    vacation = await service.update_vacation(
        principal,
        vacation_id,
        start_date=body.start_date,
        end_date=body.end_date,
        reason=body.reason,
    )
    return vacation_snapshot(vacation)


@router.delete("/vacations/{vacation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vacation(
    vacation_id: UUID,
    principal: CurrentPrincipal,
    service: TimeOffService = Depends(get_time_off_service),
) -> Response:
    await service.delete_vacation(principal, vacation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
