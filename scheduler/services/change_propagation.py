"""
Change Propagation - best-effort broadcast of calendar mutations.

After a mutation commits, a ChangeEvent is published on the business channel
``{CALENDAR_CHANNEL_PREFIX}:{business_id}`` (staff watch several resources at
once, so the key is the business, not the resource).

Delivery is at-most-once. A lost event is repaired by the viewer's reconciling
re-read (CalendarViewSync), which runs on visibility regain and after every
commit. Propagation only lowers latency; the database stays the source of
truth, so publish failures are logged and never raised to the writer.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, date as dt_date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from scheduler.utils.time_model import format_minutes, to_minutes
from shared.config import Settings
from shared.redis_client import publish_to_channel

logger = logging.getLogger(__name__)

ViewT = TypeVar("ViewT")


class ChangeKind(str, Enum):
    """What happened to the calendar."""

    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    FINISHED = "finished"
    TIME_OFF_ADDED = "time_off_added"
    TIME_OFF_UPDATED = "time_off_updated"
    TIME_OFF_DELETED = "time_off_deleted"
    VACATION_ADDED = "vacation_added"
    VACATION_UPDATED = "vacation_updated"
    VACATION_DELETED = "vacation_deleted"


class ChangeEvent(BaseModel):
    """Structured change notification sent to calendar observers."""

    business_id: UUID
    resource_id: UUID
    date: dt_date | None = None
    # Date a moved booking left; its viewers must refetch too
    previous_date: dt_date | None = None
    change_kind: ChangeKind
    booking: dict[str, Any] | None = None
    payload: dict[str, Any] | None = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def affects(self, business_id: UUID, target_date: dt_date | None) -> bool:
        if self.business_id != business_id:
            return False
        # Vacation events span ranges and carry no single date
        if self.date is None or target_date is None:
            return True
        return target_date in (self.date, self.previous_date)


def booking_snapshot(booking: Any) -> dict[str, Any]:
    """Serializable view of a booking row for change events and API responses."""
    status = booking.status
    return {
        "id": str(booking.id),
        "business_id": str(booking.business_id),
        "resource_id": str(booking.resource_id),
        "service_id": str(booking.service_id),
        "requester_id": str(booking.requester_id),
        "addon_ids": [str(a) for a in (booking.addon_ids or [])],
        "date": booking.date.isoformat(),
        "start_time": format_minutes(to_minutes(booking.start_time)),
        "end_time": format_minutes(to_minutes(booking.end_time)),
        "status": status.value if isinstance(status, Enum) else str(status),
        "previous_date": booking.previous_date.isoformat() if booking.previous_date else None,
        "previous_start_time": (
            format_minutes(to_minutes(booking.previous_start_time))
            if booking.previous_start_time else None
        ),
        "previous_end_time": (
            format_minutes(to_minutes(booking.previous_end_time))
            if booking.previous_end_time else None
        ),
        "changed_at": booking.changed_at.isoformat() if booking.changed_at else None,
    }


def calendar_channel(prefix: str, business_id: UUID) -> str:
    return f"{prefix}:{business_id}"


class ChangePublisher:
    """
    Publishes ChangeEvents to Redis pub/sub.

    Example:
        >>> publisher = ChangePublisher(redis_client, settings)
        >>> await publisher.on_booking_mutated(resource_id, day, booking, ChangeKind.CREATED)
    """

    def __init__(self, redis_client: Any, settings: Settings) -> None:
        self._client = redis_client
        self._prefix = settings.CALENDAR_CHANNEL_PREFIX

    async def on_booking_mutated(
        self,
        resource_id: UUID,
        target_date: dt_date,
        booking: Any,
        change_kind: ChangeKind,
    ) -> bool:
        """Broadcast a booking change. Returns False if the publish failed."""
        previous_date = None
        if change_kind == ChangeKind.UPDATED and booking.previous_date not in (None, target_date):
            previous_date = booking.previous_date
        event = ChangeEvent(
            business_id=booking.business_id,
            resource_id=resource_id,
            date=target_date,
            previous_date=previous_date,
            change_kind=change_kind,
            booking=booking_snapshot(booking),
        )
        return await self.publish(event)

    async def on_time_off_changed(
        self,
        business_id: UUID,
        resource_id: UUID,
        target_date: dt_date | None,
        change_kind: ChangeKind,
        payload: dict[str, Any],
    ) -> bool:
        event = ChangeEvent(
            business_id=business_id,
            resource_id=resource_id,
            date=target_date,
            change_kind=change_kind,
            payload=payload,
        )
        return await self.publish(event)

    async def publish(self, event: ChangeEvent) -> bool:
        channel = calendar_channel(self._prefix, event.business_id)
        try:
            await publish_to_channel(self._client, channel, event.model_dump(mode="json"))
        except Exception as e:
            logger.warning(
                f"Failed to publish calendar change to '{channel}': {e}",
                extra={
                    "business_id": str(event.business_id),
                    "resource_id": str(event.resource_id),
                    "change_kind": event.change_kind.value,
                },
            )
            return False

        logger.info(
            f"Calendar change published: {event.change_kind.value}",
            extra={
                "business_id": str(event.business_id),
                "resource_id": str(event.resource_id),
                "change_kind": event.change_kind.value,
            },
        )
        return True


class CalendarSubscriber:
    """Async iterator over ChangeEvents of one business channel."""

    def __init__(self, redis_client: Any, settings: Settings) -> None:
        self._client = redis_client
        self._prefix = settings.CALENDAR_CHANNEL_PREFIX

    async def listen(self, business_id: UUID) -> AsyncIterator[ChangeEvent]:
        channel = calendar_channel(self._prefix, business_id)
        pubsub = self._client.pubsub()
        await pubsub.subscribe(channel)
        logger.info(f"Subscribed to '{channel}'", extra={"business_id": str(business_id)})

        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield ChangeEvent.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning(f"Ignoring malformed calendar event on '{channel}': {e}")
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()


class CalendarViewSync(Generic[ViewT]):
    """
    Keeps one observer's calendar view consistent with the database.

    Refetches the full view (never patches it) when:
    - a change event for the watched business/date arrives while visible
    - the view regains visibility (events may have been dropped meanwhile)
    - the observer's own commit finished

    Concurrent refresh requests coalesce into one extra fetch.
    """

    def __init__(
        self,
        business_id: UUID,
        target_date: dt_date,
        fetch: Callable[[UUID, dt_date], Awaitable[ViewT]],
    ) -> None:
        self.business_id = business_id
        self.target_date = target_date
        self.view: ViewT | None = None
        self.visible = True
        self.stale = False
        self.refresh_count = 0
        self._fetch = fetch
        self._refreshing = False
        self._pending = False

    async def refresh(self, reason: str = "manual") -> ViewT | None:
        if self._refreshing:
            self._pending = True
            return self.view

        self._refreshing = True
        try:
            while True:
                self._pending = False
                try:
                    self.view = await self._fetch(self.business_id, self.target_date)
                    self.refresh_count += 1
                    self.stale = False
                except Exception as e:
                    # Keep showing the last good view; next trigger retries
                    self.stale = True
                    logger.warning(
                        f"Calendar refresh failed ({reason}): {e}",
                        extra={"business_id": str(self.business_id)},
                    )
                if not self._pending:
                    break
        finally:
            self._refreshing = False

        return self.view

    async def on_event(self, event: ChangeEvent) -> None:
        if not event.affects(self.business_id, self.target_date):
            return
        if not self.visible:
            self.stale = True
            return
        await self.refresh(f"event:{event.change_kind.value}")

    async def on_visibility_change(self, visible: bool) -> None:
        regained = visible and not self.visible
        self.visible = visible
        if regained:
            await self.refresh("visibility")

    async def after_commit(self) -> None:
        await self.refresh("commit")

    async def change_date(self, target_date: dt_date) -> None:
        self.target_date = target_date
        await self.refresh("navigate")

    async def run(self, events: AsyncIterator[ChangeEvent]) -> None:
        """Consume a subscriber stream until it ends or the task is cancelled."""
        try:
            async for event in events:
                await self.on_event(event)
        except asyncio.CancelledError:
            logger.debug("Calendar view sync stopped", extra={"business_id": str(self.business_id)})
            raise
