"""
Unit tests for RescheduleController - gesture commits through the guard.

Tests cover:
- Accepted -> Idle and the reconciling refresh
- Rejected -> ConflictPrompt, force re-commit
- Rejected without force capability -> immediate revert
- SchedulingError -> revert with the error code
- Unexpected propose failure -> revert, gesture usable again
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from scheduler.errors import ResourceUnavailable, TransientError
from scheduler.fsm import (
    CalendarBlock,
    ColumnContext,
    GestureState,
    RescheduleController,
    RescheduleGesture,
)
from scheduler.services.change_propagation import ChangeKind
from scheduler.transactions import Accepted, Rejected

RESOURCE_1 = UUID("660e8400-e29b-41d4-a716-446655440001")
BOOKING_A = UUID("aaaaaaaa-0000-0000-0000-000000000001")
DRAGGED = UUID("dddddddd-0000-0000-0000-000000000004")
MONDAY = date(2026, 3, 2)


@pytest.fixture
def gesture():
    block = CalendarBlock(DRAGGED, RESOURCE_1, MONDAY, 630, 660)
    column = ColumnContext(RESOURCE_1, MONDAY, 540, 1020, bookings=(block,))
    gesture = RescheduleGesture()
    gesture.press(block, column, 0, 0, at_ms=0)
    gesture.tick(at_ms=1900)
    gesture.move(0, 60, at_ms=2000)
    return gesture


def accepted():
    return Accepted(booking=MagicMock(), change_kind=ChangeKind.UPDATED)


def rejected():
    return Rejected(conflicting_booking_id=BOOKING_A, conflicting_booking_ids=[BOOKING_A])


class TestRelease:
    """Tests for release() -> propose."""

    @pytest.mark.asyncio
    async def test_accepted_returns_to_idle_and_refreshes(self, gesture):
        propose = AsyncMock(return_value=accepted())
        on_committed = AsyncMock()
        controller = RescheduleController(gesture, propose, on_committed=on_committed)

        result = await controller.release(at_ms=2100)

        assert result.success is True
        assert result.state == GestureState.IDLE
        candidate, force = propose.await_args.args
        assert (candidate.start_minutes, candidate.end_minutes) == (690, 720)
        assert force is False
        on_committed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_prompts(self, gesture):
        propose = AsyncMock(return_value=rejected())
        on_committed = AsyncMock()
        controller = RescheduleController(gesture, propose, on_committed=on_committed)

        result = await controller.release(at_ms=2100)

        assert result.state == GestureState.CONFLICT_PROMPT
        assert result.conflicting_booking_id == BOOKING_A
        on_committed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_without_force_capability_reverts(self, gesture):
        controller = RescheduleController(gesture, AsyncMock(return_value=rejected()), can_force=False)

        result = await controller.release(at_ms=2100)

        assert result.success is False
        assert result.state == GestureState.IDLE
        assert result.error_code == "SLOT_TAKEN"

    @pytest.mark.asyncio
    async def test_scheduling_error_reverts(self, gesture):
        propose = AsyncMock(side_effect=TransientError("retry later"))
        controller = RescheduleController(gesture, propose)

        result = await controller.release(at_ms=2100)

        assert result.success is False
        assert result.state == GestureState.IDLE
        assert result.error_code == "TRANSIENT_ERROR"
        assert gesture.displayed is None

    @pytest.mark.asyncio
    async def test_unexpected_failure_reverts(self, gesture):
        propose = AsyncMock(side_effect=ConnectionError("network down"))
        controller = RescheduleController(gesture, propose)

        result = await controller.release(at_ms=2100)

        assert result.success is False
        assert result.error_code == "TRANSIENT_ERROR"
        assert gesture.state == GestureState.IDLE
        assert gesture.displayed is None
        block = CalendarBlock(DRAGGED, RESOURCE_1, MONDAY, 630, 660)
        again = gesture.press(block, ColumnContext(RESOURCE_1, MONDAY, 540, 1020), 0, 0, at_ms=3000)
        assert again.success is True

    @pytest.mark.asyncio
    async def test_nothing_to_commit_skips_propose(self):
        propose = AsyncMock()
        block = CalendarBlock(DRAGGED, RESOURCE_1, MONDAY, 630, 660)
        gesture = RescheduleGesture()
        gesture.press(block, ColumnContext(RESOURCE_1, MONDAY, 540, 1020), 0, 0, at_ms=0)
        controller = RescheduleController(gesture, propose)

        result = await controller.release(at_ms=100)

        assert result.success is True
        propose.assert_not_awaited()


class TestConfirmForce:
    """Tests for the ConflictPrompt -> Committing path."""

    @pytest.mark.asyncio
    async def test_force_recommit_accepted(self, gesture):
        propose = AsyncMock(side_effect=[rejected(), accepted()])
        on_committed = AsyncMock()
        controller = RescheduleController(gesture, propose, on_committed=on_committed)
        await controller.release(at_ms=2100)

        result = await controller.confirm_force()

        assert result.state == GestureState.IDLE
        assert propose.await_args_list[1].args[1] is True
        on_committed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_forced_commit_refused_reverts(self, gesture):
        propose = AsyncMock(side_effect=[rejected(), ResourceUnavailable("off")])
        controller = RescheduleController(gesture, propose)
        await controller.release(at_ms=2100)

        result = await controller.confirm_force()

        assert result.state == GestureState.IDLE
        assert result.error_code == "RESOURCE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_confirm_without_prompt(self, gesture):
        propose = AsyncMock()
        controller = RescheduleController(gesture, propose)

        result = await controller.confirm_force()

        assert result.success is False
        propose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_from_prompt(self, gesture):
        controller = RescheduleController(gesture, AsyncMock(return_value=rejected()))
        await controller.release(at_ms=2100)

        result = controller.cancel()

        assert result.state == GestureState.IDLE
        assert gesture.candidate is None
