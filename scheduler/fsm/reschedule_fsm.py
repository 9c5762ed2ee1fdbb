"""
RescheduleGesture - state machine for one drag/resize gesture on the calendar.

Idle -> Armed -> Previewing -> Committing -> (Idle | ConflictPrompt)

- A press arms only after the hold threshold elapses with the pointer inside
  the movement tolerance; moving further first is a scroll, not a grab.
- While previewing, the candidate is recomputed from the vertical pointer
  delta, clamped to the visible day and snapped (booking edges and window
  bounds within tolerance, otherwise the grid).
- Resizing holds the opposite edge and keeps a minimum duration.

The candidate math is pure (compute_candidate / snap_value); the gesture
object only holds state. RescheduleController drives the commit.
"""

import logging
import math
from collections.abc import Iterable
from typing import ClassVar
from uuid import UUID

from scheduler.errors import ResourceUnavailable
from scheduler.fsm.models import (
    CalendarBlock,
    Candidate,
    ColumnContext,
    GestureConfig,
    GestureEvent,
    GestureMode,
    GestureResult,
    GestureState,
)
from scheduler.utils.time_model import clamp, format_minutes, snap

logger = logging.getLogger(__name__)


# ============================================================================
# Candidate computation (pure)
# ============================================================================


def booking_edges(column: ColumnContext, exclude_booking_id: UUID | None = None) -> list[int]:
    """Start and end minutes of every other booking drawn in the column."""
    edges: list[int] = []
    for block in column.bookings:
        if block.booking_id == exclude_booking_id:
            continue
        edges.extend((block.start_minutes, block.end_minutes))
    return edges


def snap_value(
    raw: float,
    low: int,
    high: int,
    points: Iterable[int],
    config: GestureConfig,
) -> int:
    """
    Clamp ``raw`` to [low, high], then snap it.

    The nearest snap point inside the range wins when it lies within
    ``snap_tolerance_minutes``; ties go to the earlier point. Otherwise the
    value is rounded to the grid and clamped again.
    """
    if high < low:
        high = low
    clamped = clamp(raw, low, high)

    in_range = sorted({p for p in points if low <= p <= high})
    if in_range:
        nearest = min(in_range, key=lambda p: (abs(p - clamped), p))
        if abs(nearest - clamped) <= config.snap_tolerance_minutes:
            return nearest

    return int(clamp(snap(clamped, config.grid_minutes), low, high))


def compute_candidate(
    block: CalendarBlock,
    mode: GestureMode,
    delta_px: float,
    column: ColumnContext,
    config: GestureConfig,
) -> Candidate:
    """
    Candidate placement for ``block`` after a vertical pointer delta.

    Args:
        block: Booking being dragged, at its last committed position
        mode: MOVE, RESIZE_START or RESIZE_END
        delta_px: Vertical pointer travel since the press (down is positive)
        column: Column under the pointer (resizes always use the block's own)
        config: Gesture geometry

    Returns:
        Candidate with start/end in minutes since midnight
    """
    delta_minutes = delta_px / config.pixels_per_minute
    edges = booking_edges(column, exclude_booking_id=block.booking_id)

    if mode == GestureMode.MOVE:
        duration = block.duration_minutes
        low, high = column.day_start, column.day_end - duration
        start = snap_value(
            block.start_minutes + delta_minutes, low, high, [low, high, *edges], config
        )
        end = start + duration
    elif mode == GestureMode.RESIZE_END:
        start = block.start_minutes
        low = start + config.min_duration_minutes
        high = max(low, column.day_end)
        end = snap_value(block.end_minutes + delta_minutes, low, high, [column.day_end, *edges], config)
    else:
        end = block.end_minutes
        high = end - config.min_duration_minutes
        low = min(column.day_start, high)
        start = snap_value(
            block.start_minutes + delta_minutes, low, high, [column.day_start, *edges], config
        )

    return Candidate(
        booking_id=block.booking_id,
        resource_id=column.resource_id,
        date=column.date,
        start_minutes=start,
        end_minutes=end,
    )


# ============================================================================
# Gesture state machine
# ============================================================================


class RescheduleGesture:
    """
    State of one drag/resize gesture.

    Example:
        >>> gesture = RescheduleGesture()
        >>> gesture.press(block, column, x_px=0, y_px=0, at_ms=0)
        >>> gesture.tick(at_ms=1900)
        >>> gesture.move(x_px=0, y_px=63, at_ms=2000)
        >>> gesture.release(at_ms=2100).candidate
        Candidate(...)
    """

    TRANSITIONS: ClassVar[dict[GestureState, dict[GestureEvent, GestureState]]] = {
        GestureState.IDLE: {
            GestureEvent.HOLD_ELAPSED: GestureState.ARMED,
        },
        GestureState.ARMED: {
            GestureEvent.POINTER_MOVE: GestureState.PREVIEWING,
            GestureEvent.POINTER_UP: GestureState.IDLE,
            GestureEvent.CANCEL: GestureState.IDLE,
        },
        GestureState.PREVIEWING: {
            GestureEvent.POINTER_MOVE: GestureState.PREVIEWING,
            GestureEvent.POINTER_UP: GestureState.COMMITTING,
            GestureEvent.CANCEL: GestureState.IDLE,
        },
        GestureState.COMMITTING: {
            GestureEvent.ACCEPTED: GestureState.IDLE,
            GestureEvent.REJECTED: GestureState.CONFLICT_PROMPT,
            GestureEvent.FAILED: GestureState.IDLE,
        },
        GestureState.CONFLICT_PROMPT: {
            GestureEvent.CONFIRM_FORCE: GestureState.COMMITTING,
            GestureEvent.CANCEL: GestureState.IDLE,
        },
    }

    def __init__(self, config: GestureConfig | None = None) -> None:
        self.config = config or GestureConfig()
        self._state = GestureState.IDLE
        self._clear()

    @property
    def state(self) -> GestureState:
        return self._state

    @property
    def candidate(self) -> Candidate | None:
        return self._candidate

    @property
    def block(self) -> CalendarBlock | None:
        return self._block

    @property
    def mode(self) -> GestureMode | None:
        return self._mode

    @property
    def force(self) -> bool:
        return self._force

    @property
    def press_pending(self) -> bool:
        return self._state == GestureState.IDLE and self._press is not None

    @property
    def displayed(self) -> Candidate | None:
        """Where the block is drawn right now: the live candidate, else its committed position."""
        if self._candidate is not None and self._state in (
            GestureState.PREVIEWING,
            GestureState.COMMITTING,
            GestureState.CONFLICT_PROMPT,
        ):
            return self._candidate
        return self.displayed_origin()

    def can_transition(self, event: GestureEvent) -> bool:
        return event in self.TRANSITIONS.get(self._state, {})

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------

    def press(
        self,
        block: CalendarBlock,
        column: ColumnContext,
        x_px: float,
        y_px: float,
        at_ms: int,
        mode: GestureMode = GestureMode.MOVE,
    ) -> GestureResult:
        """Pointer down on a booking (or one of its edges)."""
        if self._state != GestureState.IDLE:
            return self._fail(
                "GESTURE_IN_PROGRESS",
                f"Cannot start a gesture while {self._state.value}",
            )

        self._clear()
        self._block = block
        self._origin_column = column
        self._target_column = column
        self._mode = mode
        self._press = (x_px, y_px, at_ms)
        return GestureResult(success=True, state=self._state)

    def tick(self, at_ms: int) -> GestureResult:
        """Clock tick; arms a pending press once the hold threshold has elapsed."""
        if self.press_pending and at_ms - self._press[2] >= self.config.hold_threshold_ms:
            self._transition(GestureEvent.HOLD_ELAPSED)
        return GestureResult(success=True, state=self._state, candidate=self._candidate)

    def move(
        self,
        x_px: float,
        y_px: float,
        at_ms: int,
        column: ColumnContext | None = None,
    ) -> GestureResult:
        """
        Pointer move.

        ``column`` is the resource column under the pointer; omit it to stay
        on the current one. Resizes ignore it.
        """
        if self._press is None:
            return self._fail("NO_GESTURE", "No press in progress")

        press_x, press_y, press_at = self._press

        if self._state == GestureState.IDLE:
            if at_ms - press_at < self.config.hold_threshold_ms:
                travel = math.hypot(x_px - press_x, y_px - press_y)
                if travel > self.config.move_tolerance_px:
                    logger.debug(
                        "Press released as scroll: travel %.1fpx before hold threshold",
                        travel,
                    )
                    self._clear()
                    return self._fail(
                        "GESTURE_CANCELLED", "Pointer moved before the hold threshold"
                    )
                return GestureResult(success=True, state=self._state)
            # Hold elapsed without a tick; earlier moves stayed within tolerance
            self._transition(GestureEvent.HOLD_ELAPSED)

        if not self.can_transition(GestureEvent.POINTER_MOVE):
            return self._fail(
                "INVALID_TRANSITION",
                f"Pointer move not allowed while {self._state.value}",
            )

        if column is not None and self._mode == GestureMode.MOVE:
            self._target_column = column
        target = self._target_column if self._mode == GestureMode.MOVE else self._origin_column

        self._candidate = compute_candidate(
            self._block, self._mode, y_px - press_y, target, self.config
        )
        self._transition(GestureEvent.POINTER_MOVE)
        return GestureResult(success=True, state=self._state, candidate=self._candidate)

    def release(self, at_ms: int) -> GestureResult:
        """
        Pointer up.

        From Previewing this enters Committing and returns the candidate to
        propose. A tap, an armed-but-unmoved block, or a candidate equal to
        the committed position ends the gesture with nothing to commit. A
        drop on a column whose resource is off is refused here, before any
        proposal is made.
        """
        if self.press_pending or self._state == GestureState.ARMED:
            if self._state == GestureState.ARMED:
                self._transition(GestureEvent.POINTER_UP)
            self._clear()
            return GestureResult(success=True, state=self._state)

        if self._state != GestureState.PREVIEWING:
            return self._fail(
                "INVALID_TRANSITION",
                f"Pointer release not allowed while {self._state.value}",
            )

        candidate = self._candidate
        if self._target_column.day_off:
            self._transition(GestureEvent.CANCEL)
            self._clear()
            logger.info(
                "Gesture drop refused: resource %s is off on %s",
                candidate.resource_id,
                candidate.date,
            )
            return self._fail(
                ResourceUnavailable.error_code,
                "The target resource is not working on this date.",
                candidate=candidate,
            )

        if candidate == self.displayed_origin():
            self._transition(GestureEvent.CANCEL)
            self._clear()
            return GestureResult(success=True, state=self._state)

        self._transition(GestureEvent.POINTER_UP)
        logger.info(
            "Gesture committing: booking %s -> %s %s-%s",
            candidate.booking_id,
            candidate.date,
            format_minutes(candidate.start_minutes),
            format_minutes(candidate.end_minutes),
        )
        return GestureResult(success=True, state=self._state, candidate=candidate)

    # ------------------------------------------------------------------
    # Commit outcome
    # ------------------------------------------------------------------

    def accepted(self) -> GestureResult:
        if not self.can_transition(GestureEvent.ACCEPTED):
            return self._fail("INVALID_TRANSITION", f"No commit in flight ({self._state.value})")
        candidate = self._candidate
        self._transition(GestureEvent.ACCEPTED)
        self._clear()
        return GestureResult(success=True, state=self._state, candidate=candidate)

    def rejected(self, conflicting_booking_id: UUID | None = None) -> GestureResult:
        """The proposal overlapped another booking; wait for force or cancel."""
        if not self.can_transition(GestureEvent.REJECTED):
            return self._fail("INVALID_TRANSITION", f"No commit in flight ({self._state.value})")
        self._transition(GestureEvent.REJECTED)
        return GestureResult(
            success=False,
            state=self._state,
            candidate=self._candidate,
            error_code="SLOT_TAKEN",
            error_message="The selected time overlaps another booking.",
            conflicting_booking_id=conflicting_booking_id,
        )

    def failed(self, error_code: str, error_message: str) -> GestureResult:
        """The proposal did not commit; revert to the committed position."""
        if not self.can_transition(GestureEvent.FAILED):
            return self._fail("INVALID_TRANSITION", f"No commit in flight ({self._state.value})")
        candidate = self._candidate
        self._transition(GestureEvent.FAILED)
        self._clear()
        return GestureResult(
            success=False,
            state=self._state,
            candidate=candidate,
            error_code=error_code,
            error_message=error_message,
        )

    def confirm_force(self) -> GestureResult:
        """User chose to book over the conflict."""
        if not self.can_transition(GestureEvent.CONFIRM_FORCE):
            return self._fail("INVALID_TRANSITION", f"No conflict to confirm ({self._state.value})")
        self._force = True
        self._transition(GestureEvent.CONFIRM_FORCE)
        return GestureResult(success=True, state=self._state, candidate=self._candidate)

    def cancel(self) -> GestureResult:
        """Discard the candidate and revert. Not allowed while a commit is in flight."""
        if self._state == GestureState.COMMITTING:
            return self._fail("COMMIT_IN_PROGRESS", "Cannot cancel while the change is being saved")
        if self.can_transition(GestureEvent.CANCEL):
            self._transition(GestureEvent.CANCEL)
        self._clear()
        return GestureResult(success=True, state=self._state)

    def reset(self) -> None:
        from_state = self._state
        self._state = GestureState.IDLE
        self._clear()
        logger.debug("Gesture reset: %s -> %s", from_state.value, self._state.value)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def displayed_origin(self) -> Candidate | None:
        if self._block is None:
            return None
        return Candidate(
            booking_id=self._block.booking_id,
            resource_id=self._block.resource_id,
            date=self._block.date,
            start_minutes=self._block.start_minutes,
            end_minutes=self._block.end_minutes,
        )

    def _transition(self, event: GestureEvent) -> None:
        from_state = self._state
        self._state = self.TRANSITIONS[from_state][event]
        logger.debug(
            "Gesture transition: %s -> %s | event=%s | booking_id=%s",
            from_state.value,
            self._state.value,
            event.value,
            self._block.booking_id if self._block else None,
        )

    def _clear(self) -> None:
        self._block: CalendarBlock | None = None
        self._origin_column: ColumnContext | None = None
        self._target_column: ColumnContext | None = None
        self._mode: GestureMode | None = None
        self._press: tuple[float, float, int] | None = None
        self._candidate: Candidate | None = None
        self._force = False

    def _fail(
        self,
        error_code: str,
        error_message: str,
        candidate: Candidate | None = None,
    ) -> GestureResult:
        return GestureResult(
            success=False,
            state=self._state,
            candidate=candidate,
            error_code=error_code,
            error_message=error_message,
        )
