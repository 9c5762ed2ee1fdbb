"""
Booking endpoints.

All writes go through BookingGuard. A proposal that overlaps another booking
is a business outcome, not an error: it returns 409 with the conflicting
booking id so the caller can offer a forced retry (staff only).
"""

import logging
from datetime import date as dt_date
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.dependencies import CurrentPrincipal, get_booking_guard
from scheduler.services.change_propagation import booking_snapshot
from scheduler.transactions.booking_transaction import Accepted, BookingGuard, ProposalOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


# =============================================================================
# Request Models
# =============================================================================


class CreateBookingRequest(BaseModel):
    resource_id: UUID
    service_id: UUID
    addon_ids: list[UUID] = Field(default_factory=list)
    date: dt_date
    start_time: str = Field(..., description="HH:MM")
    force: bool = False
    requester_id: UUID | None = Field(
        default=None, description="Book on behalf of a client (staff only)"
    )


class ScheduleBookingRequest(BaseModel):
    date: dt_date
    start_time: str = Field(..., description="HH:MM")
    end_time: str | None = Field(
        default=None, description="HH:MM; omitted = keep the catalog duration"
    )
    resource_id: UUID | None = None
    force: bool = False


def _outcome_response(outcome: ProposalOutcome, created: bool = False) -> JSONResponse:
    if isinstance(outcome, Accepted):
        return JSONResponse(
            status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
            content=outcome.to_dict(),
        )
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=outcome.to_dict())


# =============================================================================
# Endpoints
# =============================================================================


@router.post("")
async def create_booking(
    body: CreateBookingRequest,
    principal: CurrentPrincipal,
    guard: BookingGuard = Depends(get_booking_guard),
) -> JSONResponse:
    """ProposeBooking: end time comes from the service and add-on durations."""
    outcome = await guard.propose_from_catalog(
        principal,
        body.resource_id,
        body.service_id,
        body.addon_ids,
        body.date,
        body.start_time,
        force=body.force,
        requester_id=body.requester_id,
    )
    return _outcome_response(outcome, created=True)


@router.put("/{booking_id}/schedule")
async def schedule_booking(
    booking_id: UUID,
    body: ScheduleBookingRequest,
    principal: CurrentPrincipal,
    guard: BookingGuard = Depends(get_booking_guard),
) -> JSONResponse:
    """Move and/or resize a booking (drag-and-drop commit)."""
    outcome = await guard.reschedule(
        principal,
        booking_id,
        body.date,
        body.start_time,
        end=body.end_time,
        resource_id=body.resource_id,
        force=body.force,
    )
    return _outcome_response(outcome)


@router.put("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: UUID,
    principal: CurrentPrincipal,
    guard: BookingGuard = Depends(get_booking_guard),
) -> dict:
    booking = await guard.cancel_booking(principal, booking_id)
    return {"status": "cancelled", "booking": booking_snapshot(booking)}


@router.put("/{booking_id}/finish")
async def finish_booking(
    booking_id: UUID,
    principal: CurrentPrincipal,
    guard: BookingGuard = Depends(get_booking_guard),
) -> dict:
    booking = await guard.finish_booking(principal, booking_id)
    return {"status": "finished", "booking": booking_snapshot(booking)}
