"""
Unit tests for the HTTP API.

Services are replaced with mocks through ``app.dependency_overrides``; the
lifespan bootstrap is not run, so no database or Redis is needed.
"""

from datetime import date, time
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from starlette.websockets import WebSocketDisconnect

from api.dependencies import (
    get_availability_service,
    get_booking_guard,
    get_calendar_query_service,
    get_capabilities,
    get_time_off_service,
)
from api.main import app, status_code_for
from database.models import BookingStatus
from scheduler.errors import (
    BookingNotMutable,
    Conflict,
    InvalidTimeFormat,
    ResourceUnavailable,
    SchedulingError,
    TransientError,
    Unauthorized,
)
from scheduler.services.availability_service import Slot, SlotKind
from scheduler.services.change_propagation import ChangeKind
from scheduler.transactions import Accepted, Rejected
from shared.config import get_settings
from tests.helpers import FakeDatabase

CLIENT_ID = UUID("550e8400-e29b-41d4-a716-44665544aaaa")
BOOKING_A = UUID("aaaaaaaa-0000-0000-0000-000000000001")
BOOKING_ID = UUID("dddddddd-0000-0000-0000-000000000004")


def make_token(subject: str = str(CLIENT_ID)) -> str:
    settings = get_settings()
    return jwt.encode({"sub": subject}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth(subject: str = str(CLIENT_ID)) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(subject)}"}


def booking_row(business_id, resource_id, service_id, status=BookingStatus.BOOKED):
    row = MagicMock()
    row.id = BOOKING_ID
    row.business_id = business_id
    row.resource_id = resource_id
    row.service_id = service_id
    row.requester_id = CLIENT_ID
    row.addon_ids = []
    row.date = date(2026, 3, 2)
    row.start_time = time(10, 0)
    row.end_time = time(10, 30)
    row.status = status
    row.previous_date = None
    row.previous_start_time = None
    row.previous_end_time = None
    row.changed_at = None
    return row


@pytest.fixture
def guard():
    return MagicMock()


@pytest.fixture
def availability():
    return MagicMock()


@pytest.fixture
def calendar():
    return MagicMock()


@pytest.fixture
def time_off():
    return MagicMock()


@pytest.fixture
def capabilities():
    checker = MagicMock()
    checker.is_staff_for_business = AsyncMock(return_value=True)
    return checker


@pytest.fixture
def client(guard, availability, calendar, time_off, capabilities):
    app.dependency_overrides[get_booking_guard] = lambda: guard
    app.dependency_overrides[get_availability_service] = lambda: availability
    app.dependency_overrides[get_calendar_query_service] = lambda: calendar
    app.dependency_overrides[get_time_off_service] = lambda: time_off
    app.dependency_overrides[get_capabilities] = lambda: capabilities
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:
    def test_missing_token(self, client, resource_id):
        response = client.get(f"/api/resources/{resource_id}/unavailable-days?month=2026-03")

        assert response.status_code == 401

    def test_bad_signature(self, client, resource_id):
        token = jwt.encode({"sub": str(CLIENT_ID)}, "wrong-secret", algorithm="HS256")

        response = client.get(
            f"/api/resources/{resource_id}/unavailable-days?month=2026-03",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_subject_must_be_uuid(self, client, resource_id):
        response = client.get(
            f"/api/resources/{resource_id}/unavailable-days?month=2026-03",
            headers=auth("not-a-uuid"),
        )

        assert response.status_code == 401


# ============================================================================
# Bookings
# ============================================================================


class TestBookingRoutes:
    def test_create_accepted(self, client, guard, business_id, resource_id, service_id):
        booking = booking_row(business_id, resource_id, service_id)
        guard.propose_from_catalog = AsyncMock(
            return_value=Accepted(booking=booking, change_kind=ChangeKind.CREATED)
        )

        response = client.post(
            "/api/bookings",
            json={
                "resource_id": str(resource_id),
                "service_id": str(service_id),
                "date": "2026-03-02",
                "start_time": "10:00",
            },
            headers=auth(),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "accepted"
        assert body["booking"]["start_time"] == "10:00"

        args = guard.propose_from_catalog.await_args.args
        assert args[0].id == CLIENT_ID
        assert args[1] == resource_id
        assert args[4] == date(2026, 3, 2)
        assert guard.propose_from_catalog.await_args.kwargs["force"] is False

    def test_create_rejected_is_409(self, client, guard, resource_id, service_id):
        guard.propose_from_catalog = AsyncMock(
            return_value=Rejected(conflicting_booking_id=BOOKING_A, conflicting_booking_ids=[BOOKING_A])
        )

        response = client.post(
            "/api/bookings",
            json={
                "resource_id": str(resource_id),
                "service_id": str(service_id),
                "date": "2026-03-02",
                "start_time": "10:15",
            },
            headers=auth(),
        )

        assert response.status_code == 409
        assert response.json()["conflicting_booking_id"] == str(BOOKING_A)
        assert response.json()["error_code"] == "SLOT_TAKEN"

    def test_create_on_day_off_is_422(self, client, guard, resource_id, service_id):
        guard.propose_from_catalog = AsyncMock(
            side_effect=ResourceUnavailable("off", {"reason": "vacation"})
        )

        response = client.post(
            "/api/bookings",
            json={
                "resource_id": str(resource_id),
                "service_id": str(service_id),
                "date": "2026-03-02",
                "start_time": "10:00",
                "force": True,
            },
            headers=auth(),
        )

        assert response.status_code == 422
        assert response.json() == {
            "error_code": "RESOURCE_UNAVAILABLE",
            "error_message": "off",
            "details": {"reason": "vacation"},
        }

    def test_schedule_passes_optional_end(self, client, guard, business_id, resource_id, service_id):
        booking = booking_row(business_id, resource_id, service_id)
        guard.reschedule = AsyncMock(
            return_value=Accepted(booking=booking, change_kind=ChangeKind.UPDATED)
        )

        response = client.put(
            f"/api/bookings/{BOOKING_ID}/schedule",
            json={"date": "2026-03-02", "start_time": "11:00"},
            headers=auth(),
        )

        assert response.status_code == 200
        kwargs = guard.reschedule.await_args.kwargs
        assert kwargs["end"] is None
        assert kwargs["resource_id"] is None
        assert guard.reschedule.await_args.args[1] == BOOKING_ID

    def test_schedule_transient_failure_is_503(self, client, guard):
        guard.reschedule = AsyncMock(side_effect=TransientError("retry"))

        response = client.put(
            f"/api/bookings/{BOOKING_ID}/schedule",
            json={"date": "2026-03-02", "start_time": "11:00", "end_time": "11:30"},
            headers=auth(),
        )

        assert response.status_code == 503
        assert response.json()["error_code"] == "TRANSIENT_ERROR"

    def test_cancel(self, client, guard, business_id, resource_id, service_id):
        guard.cancel_booking = AsyncMock(
            return_value=booking_row(business_id, resource_id, service_id, BookingStatus.CANCELLED)
        )

        response = client.put(f"/api/bookings/{BOOKING_ID}/cancel", headers=auth())

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "cancelled"

    def test_finish_by_client_is_403(self, client, guard):
        guard.finish_booking = AsyncMock(side_effect=Unauthorized("staff only"))

        response = client.put(f"/api/bookings/{BOOKING_ID}/finish", headers=auth())

        assert response.status_code == 403

    def test_finish_twice_is_409(self, client, guard):
        guard.finish_booking = AsyncMock(side_effect=BookingNotMutable("already finished"))

        response = client.put(f"/api/bookings/{BOOKING_ID}/finish", headers=auth())

        assert response.status_code == 409


# ============================================================================
# Availability and calendar
# ============================================================================


class TestAvailabilityRoutes:
    def test_availability(self, client, availability, resource_id, service_id):
        availability.compute_availability = AsyncMock(return_value=(
            [Slot(360, 540, SlotKind.OUTSIDE_HOURS), Slot(540, 600, SlotKind.BOOKABLE)],
            30,
        ))

        response = client.get(
            f"/api/resources/{resource_id}/availability",
            params={"date": "2026-03-02", "service_id": str(service_id)},
            headers=auth(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["duration_minutes"] == 30
        assert [s["kind"] for s in body["slots"]] == ["outside_hours", "bookable"]
        assert body["start_times"] == [
            {"start_time": "09:00", "end_time": "09:30"},
            {"start_time": "09:30", "end_time": "10:00"},
        ]

    def test_invalid_time_is_400(self, client, availability, resource_id, service_id):
        availability.compute_availability = AsyncMock(side_effect=InvalidTimeFormat("bad"))

        response = client.get(
            f"/api/resources/{resource_id}/availability",
            params={"date": "2026-03-02", "service_id": str(service_id)},
            headers=auth(),
        )

        assert response.status_code == 400

    def test_unavailable_days(self, client, availability, resource_id):
        availability.unavailable_days = AsyncMock(return_value=[date(2026, 3, 8), date(2026, 3, 7)])

        response = client.get(
            f"/api/resources/{resource_id}/unavailable-days?month=2026-03", headers=auth()
        )

        assert response.status_code == 200
        assert response.json()["unavailable_days"] == ["2026-03-07", "2026-03-08"]
        availability.unavailable_days.assert_awaited_once_with(resource_id, 2026, 3)

    def test_unavailable_days_bad_month(self, client, resource_id):
        response = client.get(
            f"/api/resources/{resource_id}/unavailable-days?month=2026-13", headers=auth()
        )

        assert response.status_code == 422


class TestCalendarRoutes:
    def test_staff_gets_day_view(self, client, calendar, business_id):
        calendar.get_business_day = AsyncMock(return_value={"resources": []})

        response = client.get(
            f"/api/businesses/{business_id}/calendar?date=2026-03-02", headers=auth()
        )

        assert response.status_code == 200
        calendar.get_business_day.assert_awaited_once_with(business_id, date(2026, 3, 2))

    def test_non_staff_is_403(self, client, calendar, capabilities, business_id):
        capabilities.is_staff_for_business = AsyncMock(return_value=False)
        calendar.get_business_day = AsyncMock()

        response = client.get(
            f"/api/businesses/{business_id}/calendar?date=2026-03-02", headers=auth()
        )

        assert response.status_code == 403
        calendar.get_business_day.assert_not_awaited()

    def test_websocket_rejects_bad_token(self, client, business_id):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws/calendar/{business_id}?token=bad"):
                pass


class TestTimeOffRoutes:
    def test_create_time_off(self, client, time_off, resource_id):
        block = MagicMock(
            id=UUID("cccccccc-0000-0000-0000-000000000003"),
            resource_id=resource_id,
            date=date(2026, 3, 2),
            start_time=time(13, 0),
            end_time=time(14, 0),
            reason="Lunch",
        )
        time_off.add_time_off = AsyncMock(return_value=block)

        response = client.post(
            "/api/time-off",
            json={
                "resource_id": str(resource_id),
                "date": "2026-03-02",
                "start_time": "13:00",
                "end_time": "14:00",
                "reason": "Lunch",
            },
            headers=auth(),
        )

        assert response.status_code == 201
        assert response.json()["end_time"] == "14:00"

    def test_delete_vacation(self, client, time_off):
        time_off.delete_vacation = AsyncMock(return_value=None)

        response = client.delete(
            "/api/vacations/eeeeeeee-0000-0000-0000-000000000005", headers=auth()
        )

        assert response.status_code == 204


# ============================================================================
# Error mapping and health
# ============================================================================


class TestErrorMapping:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (InvalidTimeFormat("x"), 400),
            (Conflict("x", BOOKING_A), 409),
            (ResourceUnavailable("x"), 422),
            (TransientError("x"), 503),
            (SchedulingError("x"), 400),
        ],
    )
    def test_status_code_for(self, error, expected):
        assert status_code_for(error) == expected


class TestHealth:
    def test_healthy(self, client):
        app.state.redis_client = MagicMock(ping=AsyncMock(return_value=True))
        app.state.database = FakeDatabase()

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "redis": "connected", "postgres": "connected"}

    def test_redis_down(self, client):
        app.state.redis_client = MagicMock(ping=AsyncMock(side_effect=ConnectionError("down")))
        app.state.database = FakeDatabase()

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["redis"] == "disconnected"
