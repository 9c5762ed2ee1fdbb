"""
FastAPI dependencies: authenticated principal and service accessors.

Services are built once by the lifespan bootstrap (api/main.py) and stored on
``app.state``; routes reach them through the getters below so tests can swap
them with ``app.dependency_overrides``.
"""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from scheduler.identity import CapabilityChecker, Principal
from scheduler.services.availability_service import AvailabilityService
from scheduler.services.calendar_query_service import CalendarQueryService
from scheduler.services.time_off_service import TimeOffService
from scheduler.transactions.booking_transaction import BookingGuard
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def verify_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a JWT and return its payload."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
        )


def principal_from_token(token: str, settings: Settings) -> Principal:
    payload = verify_token(token, settings)
    try:
        return Principal(id=UUID(str(payload["sub"])))
    except (KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token subject is not a valid principal id",
        )


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Dependency resolving the caller from the Authorization header."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal_from_token(credentials.credentials, settings)


def get_booking_guard(request: Request) -> BookingGuard:
    return request.app.state.booking_guard


def get_availability_service(request: Request) -> AvailabilityService:
    return request.app.state.availability_service


def get_calendar_query_service(request: Request) -> CalendarQueryService:
    return request.app.state.calendar_query_service


def get_time_off_service(request: Request) -> TimeOffService:
    return request.app.state.time_off_service


def get_capabilities(request: Request) -> CapabilityChecker:
    return request.app.state.capabilities


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
