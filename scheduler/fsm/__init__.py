"""
Rescheduling gesture module.

Turns pointer input into candidate placements for a booking and commits them
through the booking guard.

Public exports:
    - RescheduleGesture: drag/resize state machine
    - RescheduleController: commits candidates and handles conflicts
    - GestureState / GestureMode / GestureConfig: state, mode, geometry
    - CalendarBlock / ColumnContext / Candidate: calendar inputs and output
    - compute_candidate / snap_value: pure candidate math
"""

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
from scheduler.fsm.reschedule_controller import RescheduleController
from scheduler.fsm.reschedule_fsm import RescheduleGesture, compute_candidate, snap_value

__all__ = [
    "CalendarBlock",
    "Candidate",
    "ColumnContext",
    "GestureConfig",
    "GestureEvent",
    "GestureMode",
    "GestureResult",
    "GestureState",
    "RescheduleController",
    "RescheduleGesture",
    "compute_candidate",
    "snap_value",
]
