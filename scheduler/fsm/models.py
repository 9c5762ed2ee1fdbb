"""
Data models for the drag/resize gesture state machine.

- GestureState: states of one in-progress gesture
- GestureMode: move the whole booking, or drag one of its edges
- GestureConfig: thresholds and grid geometry
- CalendarBlock / ColumnContext: what the gesture knows about the calendar
- Candidate: the (resource, date, start, end) a gesture would commit
- GestureResult: outcome of a gesture operation
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID


class GestureState(str, Enum):
    """States of a drag/resize gesture."""

    IDLE = "idle"  # No gesture (a press may be pending)
    ARMED = "armed"  # Hold threshold passed, block grabbed
    PREVIEWING = "previewing"  # Live candidate shown, nothing committed
    COMMITTING = "committing"  # Proposal in flight, cannot be cancelled
    CONFLICT_PROMPT = "conflict_prompt"  # Overlap reported, awaiting force/cancel


class GestureMode(str, Enum):
    """What part of the booking is being dragged."""

    MOVE = "move"
    RESIZE_START = "resize_start"
    RESIZE_END = "resize_end"


class GestureEvent(str, Enum):
    """Inputs driving the gesture state machine."""

    HOLD_ELAPSED = "hold_elapsed"
    POINTER_MOVE = "pointer_move"
    POINTER_UP = "pointer_up"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"
    CONFIRM_FORCE = "confirm_force"
    CANCEL = "cancel"


@dataclass(frozen=True)
class GestureConfig:
    """
    Gesture thresholds and grid geometry.

    grid_height_px is the height of one hour row, so
    pixels_per_minute = grid_height_px / 60.
    """

    hold_threshold_ms: int = 1900
    move_tolerance_px: float = 5.0
    grid_minutes: int = 5
    snap_tolerance_minutes: int = 3  # wider than 1 so 10:03 snaps back to a 10:00 edge
    min_duration_minutes: int = 5
    grid_height_px: float = 60.0

    @property
    def pixels_per_minute(self) -> float:
        return self.grid_height_px / 60

    @classmethod
    def from_settings(cls, settings: Any, grid_height_px: float = 60.0) -> "GestureConfig":
        return cls(
            hold_threshold_ms=settings.GESTURE_HOLD_THRESHOLD_MS,
            move_tolerance_px=settings.GESTURE_MOVE_TOLERANCE_PX,
            grid_minutes=settings.SLOT_GRID_MINUTES,
            snap_tolerance_minutes=settings.GESTURE_SNAP_TOLERANCE_MINUTES,
            min_duration_minutes=settings.MIN_RESIZE_MINUTES,
            grid_height_px=grid_height_px,
        )


@dataclass(frozen=True)
class CalendarBlock:
    """A booking as drawn on the calendar."""

    booking_id: UUID
    resource_id: UUID
    date: date
    start_minutes: int
    end_minutes: int

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


@dataclass(frozen=True)
class ColumnContext:
    """
    One resource column for one date.

    day_start/day_end are the visible bounds of the column; candidates are
    clamped inside them.
    """

    resource_id: UUID
    date: date
    day_start: int
    day_end: int
    day_off: bool = False
    bookings: tuple[CalendarBlock, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Candidate:
    """Placement a gesture would commit."""

    booking_id: UUID
    resource_id: UUID
    date: date
    start_minutes: int
    end_minutes: int


@dataclass
class GestureResult:
    """Result of a gesture operation."""

    success: bool
    state: GestureState
    candidate: Candidate | None = None
    error_code: str | None = None
    error_message: str | None = None
    conflicting_booking_id: UUID | None = None
