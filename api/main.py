"""
FastAPI API Service Entry Point
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text

from api.routes import availability, bookings, calendar, time_off
from database.connection import Database
from scheduler.errors import (
    BookingLimitExceeded,
    BookingNotFound,
    BookingNotMutable,
    Conflict,
    InvalidDuration,
    InvalidTimeFormat,
    ResourceNotFound,
    ResourceUnavailable,
    SchedulingError,
    TransientError,
    Unauthorized,
)
from scheduler.identity import DatabaseCapabilityChecker
from scheduler.services.availability_service import AvailabilityService
from scheduler.services.calendar_query_service import CalendarQueryService
from scheduler.services.catalog_service import CatalogService
from scheduler.services.change_propagation import ChangePublisher
from scheduler.services.constraint_source import ConstraintSource
from scheduler.services.time_off_service import TimeOffService
from scheduler.transactions.booking_transaction import BookingGuard
from shared.config import Settings, get_settings
from shared.logging_config import configure_logging
from shared.redis_client import close_redis_client, create_redis_client

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[SchedulingError], int] = {
    InvalidTimeFormat: 400,
    InvalidDuration: 400,
    ResourceNotFound: 404,
    BookingNotFound: 404,
    ResourceUnavailable: 422,
    Conflict: 409,
    BookingNotMutable: 409,
    BookingLimitExceeded: 409,
    TransientError: 503,
    Unauthorized: 403,
}


def status_code_for(exc: SchedulingError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 400


def build_services(app: FastAPI, settings: Settings, database: Database, redis_client) -> None:
    """Wire the scheduling services onto ``app.state``."""
    constraint_source = ConstraintSource(database)
    catalog = CatalogService(database)
    capabilities = DatabaseCapabilityChecker(database)
    publisher = ChangePublisher(redis_client, settings)

    app.state.database = database
    app.state.redis_client = redis_client
    app.state.capabilities = capabilities
    app.state.availability_service = AvailabilityService(
        database, constraint_source, catalog, settings
    )
    app.state.calendar_query_service = CalendarQueryService(database, constraint_source, settings)
    app.state.time_off_service = TimeOffService(database, capabilities, publisher)
    app.state.booking_guard = BookingGuard(
        database, constraint_source, capabilities, publisher, catalog, settings
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    database = Database.from_settings(settings)
    redis_client = create_redis_client(settings)
    build_services(app, settings, database, redis_client)
    logger.info("Scheduling API started")

    try:
        yield
    finally:
        await close_redis_client(redis_client)
        await database.dispose()
        logger.info("Scheduling API stopped")


app = FastAPI(
    title="Scheduling API",
    version="1.0.0",
    lifespan=lifespan,
)

# Load settings for CORS configuration
settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(calendar.router)
app.include_router(time_off.router)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Map scheduling errors to HTTP status codes with their error_code/message/details body."""
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.error_message}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors()},
    )


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command)
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "redis": "unknown",
        "postgres": "unknown",
    }
    status_code = 200

    # Check Redis connectivity
    try:
        await request.app.state.redis_client.ping()
        health_status["redis"] = "connected"
    except Exception:
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    # Check PostgreSQL connectivity
    try:
        async with request.app.state.database.session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception:
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)
