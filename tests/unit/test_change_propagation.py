"""
Unit tests for change_propagation.py - calendar change broadcast.

Tests coverage:
- ChangePublisher: channel naming, event payload, swallowed failures
- CalendarSubscriber: decoding, skipping non-messages and malformed data
- CalendarViewSync: refresh triggers, visibility, coalescing, stale views
"""

import asyncio
import json
from datetime import date, time
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from database.models import BookingStatus
from scheduler.services.change_propagation import (
    CalendarSubscriber,
    CalendarViewSync,
    ChangeEvent,
    ChangeKind,
    ChangePublisher,
    booking_snapshot,
)
from shared.config import Settings

BOOKING_ID = UUID("dddddddd-0000-0000-0000-000000000004")
OTHER_BUSINESS = UUID("550e8400-e29b-41d4-a716-44665544eeee")


@pytest.fixture
def booking(business_id, resource_id, service_id, monday):
    row = MagicMock()
    row.id = BOOKING_ID
    row.business_id = business_id
    row.resource_id = resource_id
    row.service_id = service_id
    row.requester_id = UUID("550e8400-e29b-41d4-a716-44665544aaaa")
    row.addon_ids = []
    row.date = monday
    row.start_time = time(10, 0)
    row.end_time = time(10, 30)
    row.status = BookingStatus.BOOKED
    row.previous_date = monday
    row.previous_start_time = time(9, 0)
    row.previous_end_time = time(9, 30)
    row.changed_at = None
    return row


def event(business_id, resource_id, target_date, kind=ChangeKind.UPDATED):
    return ChangeEvent(
        business_id=business_id, resource_id=resource_id, date=target_date, change_kind=kind
    )


# ============================================================================
# ChangePublisher
# ============================================================================


class TestChangePublisher:
    """Tests for publishing change events."""

    def test_booking_snapshot(self, booking):
        snapshot = booking_snapshot(booking)

        assert snapshot["id"] == str(BOOKING_ID)
        assert snapshot["start_time"] == "10:00"
        assert snapshot["status"] == "booked"
        assert snapshot["previous_start_time"] == "09:00"
        assert snapshot["changed_at"] is None

    @pytest.mark.asyncio
    async def test_booking_event_on_business_channel(self, booking, business_id, resource_id, monday):
        redis_client = MagicMock()
        redis_client.publish = AsyncMock(return_value=1)
        publisher = ChangePublisher(redis_client, Settings(CALENDAR_CHANNEL_PREFIX="cal"))

        ok = await publisher.on_booking_mutated(resource_id, monday, booking, ChangeKind.CREATED)

        assert ok is True
        channel, payload = redis_client.publish.await_args.args
        assert channel == f"cal:{business_id}"
        data = json.loads(payload)
        assert data["change_kind"] == "created"
        assert data["date"] == "2026-03-02"
        assert data["booking"]["id"] == str(BOOKING_ID)
        assert data["previous_date"] is None

    @pytest.mark.asyncio
    async def test_move_event_names_the_date_left(self, booking, resource_id, monday):
        redis_client = MagicMock()
        redis_client.publish = AsyncMock(return_value=1)
        publisher = ChangePublisher(redis_client, Settings())
        tuesday = date(2026, 3, 3)
        booking.date = tuesday

        await publisher.on_booking_mutated(resource_id, tuesday, booking, ChangeKind.UPDATED)

        data = json.loads(redis_client.publish.await_args.args[1])
        assert data["date"] == "2026-03-03"
        assert data["previous_date"] == "2026-03-02"

    @pytest.mark.asyncio
    async def test_same_day_move_has_no_previous_date(self, booking, resource_id, monday):
        redis_client = MagicMock()
        redis_client.publish = AsyncMock(return_value=1)
        publisher = ChangePublisher(redis_client, Settings())

        await publisher.on_booking_mutated(resource_id, monday, booking, ChangeKind.UPDATED)

        data = json.loads(redis_client.publish.await_args.args[1])
        assert data["previous_date"] is None

    @pytest.mark.asyncio
    async def test_publish_failure_returns_false(self, booking, resource_id, monday):
        redis_client = MagicMock()
        redis_client.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        publisher = ChangePublisher(redis_client, Settings())

        ok = await publisher.on_booking_mutated(resource_id, monday, booking, ChangeKind.CANCELLED)

        assert ok is False

    @pytest.mark.asyncio
    async def test_vacation_event_has_no_date(self, business_id, resource_id):
        redis_client = MagicMock()
        redis_client.publish = AsyncMock(return_value=0)
        publisher = ChangePublisher(redis_client, Settings())

        await publisher.on_time_off_changed(
            business_id, resource_id, None, ChangeKind.VACATION_ADDED, {"start_date": "2026-03-02"}
        )

        data = json.loads(redis_client.publish.await_args.args[1])
        assert data["date"] is None
        assert data["payload"] == {"start_date": "2026-03-02"}


class TestChangeEventAffects:
    def test_matching_business_and_date(self, business_id, resource_id, monday):
        assert event(business_id, resource_id, monday).affects(business_id, monday) is True

    def test_other_date(self, business_id, resource_id, monday):
        assert event(business_id, resource_id, monday).affects(business_id, date(2026, 3, 3)) is False

    def test_other_business(self, business_id, resource_id, monday):
        assert event(business_id, resource_id, monday).affects(OTHER_BUSINESS, monday) is False

    def test_dateless_event_affects_every_date(self, business_id, resource_id, monday):
        assert event(business_id, resource_id, None).affects(business_id, monday) is True

    def test_move_affects_both_dates(self, business_id, resource_id, monday):
        tuesday = date(2026, 3, 3)
        moved = ChangeEvent(
            business_id=business_id,
            resource_id=resource_id,
            date=tuesday,
            previous_date=monday,
            change_kind=ChangeKind.UPDATED,
        )

        assert moved.affects(business_id, monday) is True
        assert moved.affects(business_id, tuesday) is True
        assert moved.affects(business_id, date(2026, 3, 4)) is False


# ============================================================================
# CalendarSubscriber
# ============================================================================


class FakePubSub:
    def __init__(self, messages):
        self._messages = messages
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        for message in self._messages:
            yield message


class TestCalendarSubscriber:
    @pytest.mark.asyncio
    async def test_yields_decoded_events(self, business_id, resource_id, monday):
        good = event(business_id, resource_id, monday, ChangeKind.CREATED).model_dump_json()
        pubsub = FakePubSub([
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": "not json"},
            {"type": "message", "data": good},
        ])
        redis_client = MagicMock()
        redis_client.pubsub.return_value = pubsub

        events = [e async for e in CalendarSubscriber(redis_client, Settings()).listen(business_id)]

        assert len(events) == 1
        assert events[0].change_kind == ChangeKind.CREATED
        pubsub.subscribe.assert_awaited_once_with(f"calendar:{business_id}")
        pubsub.unsubscribe.assert_awaited_once()
        pubsub.aclose.assert_awaited_once()


# ============================================================================
# CalendarViewSync
# ============================================================================


class TestCalendarViewSync:
    """Tests for the reconciling re-read."""

    @pytest.mark.asyncio
    async def test_event_for_watched_date_refetches(self, business_id, resource_id, monday):
        fetch = AsyncMock(return_value={"bookings": []})
        sync = CalendarViewSync(business_id, monday, fetch)

        await sync.on_event(event(business_id, resource_id, monday))

        fetch.assert_awaited_once_with(business_id, monday)
        assert sync.view == {"bookings": []}

    @pytest.mark.asyncio
    async def test_unrelated_event_is_ignored(self, business_id, resource_id, monday):
        fetch = AsyncMock()
        sync = CalendarViewSync(business_id, monday, fetch)

        await sync.on_event(event(business_id, resource_id, date(2026, 3, 3)))
        await sync.on_event(event(OTHER_BUSINESS, resource_id, monday))

        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hidden_view_refetches_on_visibility_regain(self, business_id, resource_id, monday):
        fetch = AsyncMock(return_value="view")
        sync = CalendarViewSync(business_id, monday, fetch)

        await sync.on_visibility_change(False)
        await sync.on_event(event(business_id, resource_id, monday))
        assert fetch.await_count == 0
        assert sync.stale is True

        await sync.on_visibility_change(True)

        assert fetch.await_count == 1
        assert sync.stale is False

    @pytest.mark.asyncio
    async def test_visibility_regain_refetches_without_events(self, business_id, monday):
        fetch = AsyncMock(return_value="view")
        sync = CalendarViewSync(business_id, monday, fetch)
        await sync.on_visibility_change(False)

        await sync.on_visibility_change(True)

        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_after_commit_refetches(self, business_id, monday):
        fetch = AsyncMock(return_value="view")
        sync = CalendarViewSync(business_id, monday, fetch)

        await sync.after_commit()

        assert sync.refresh_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_coalesce(self, business_id, monday):
        release = asyncio.Event()
        calls = 0

        async def fetch(_business_id, _date):
            nonlocal calls
            calls += 1
            if calls == 1:
                await release.wait()
            return calls

        sync = CalendarViewSync(business_id, monday, fetch)
        first = asyncio.create_task(sync.refresh("event"))
        await asyncio.sleep(0)

        await sync.refresh("event")
        await sync.refresh("event")
        release.set()
        await first

        assert calls == 2
        assert sync.view == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_last_view(self, business_id, monday):
        fetch = AsyncMock(side_effect=["view-1", ConnectionError("db down")])
        sync = CalendarViewSync(business_id, monday, fetch)

        await sync.refresh()
        await sync.refresh()

        assert sync.view == "view-1"
        assert sync.stale is True

    @pytest.mark.asyncio
    async def test_change_date_refetches_new_date(self, business_id, monday):
        fetch = AsyncMock(return_value="view")
        sync = CalendarViewSync(business_id, monday, fetch)
        tuesday = date(2026, 3, 3)

        await sync.change_date(tuesday)

        fetch.assert_awaited_once_with(business_id, tuesday)

    @pytest.mark.asyncio
    async def test_run_consumes_stream(self, business_id, resource_id, monday):
        fetch = AsyncMock(return_value="view")
        sync = CalendarViewSync(business_id, monday, fetch)

        async def events():
            yield event(business_id, resource_id, monday)
            yield event(business_id, resource_id, date(2026, 3, 3))

        await sync.run(events())

        assert fetch.await_count == 1
