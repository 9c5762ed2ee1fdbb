"""
Calendar endpoints.

- GET /api/businesses/{business_id}/calendar: multi-resource day view (staff)
- WS  /ws/calendar/{business_id}: live change events for a business (staff)

The websocket only relays change events. Clients re-read the day view when
an event arrives, when they regain focus and after their own commits.
"""

import asyncio
import contextlib
import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from api.dependencies import (
    CurrentPrincipal,
    get_calendar_query_service,
    get_capabilities,
    principal_from_token,
)
from scheduler.errors import Unauthorized
from scheduler.identity import CapabilityChecker
from scheduler.services.calendar_query_service import CalendarQueryService
from scheduler.services.change_propagation import CalendarSubscriber
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar"])


@router.get("/api/businesses/{business_id}/calendar")
async def get_business_calendar(
    business_id: UUID,
    principal: CurrentPrincipal,
    target_date: Annotated[date, Query(alias="date")],
    calendar: CalendarQueryService = Depends(get_calendar_query_service),
    capabilities: CapabilityChecker = Depends(get_capabilities),
) -> dict:
    if not await capabilities.is_staff_for_business(principal, business_id):
        raise Unauthorized(
            "Only staff can view the business calendar", {"business_id": str(business_id)}
        )
    return await calendar.get_business_day(business_id, target_date)


@router.websocket("/ws/calendar/{business_id}")
async def calendar_ws(websocket: WebSocket, business_id: UUID, token: str = "") -> None:
    settings = get_settings()
    try:
        principal = principal_from_token(token, settings)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    capabilities: CapabilityChecker = websocket.app.state.capabilities
    if not await capabilities.is_staff_for_business(principal, business_id):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info("Calendar client connected", extra={"business_id": str(business_id)})

    subscriber = CalendarSubscriber(websocket.app.state.redis_client, settings)

    async def relay() -> None:
        async for event in subscriber.listen(business_id):
            await websocket.send_json(event.model_dump(mode="json"))

    async def receive() -> None:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")

    tasks = [asyncio.create_task(relay()), asyncio.create_task(receive())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            with contextlib.suppress(WebSocketDisconnect):
                task.result()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Calendar client disconnected", extra={"business_id": str(business_id)})
