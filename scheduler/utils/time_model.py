"""
Clock-time arithmetic shared by the availability calculator, the booking
guard and the drag/resize gesture model.

Times of day are handled as integer minutes since midnight. 1440 ("24:00")
is a valid end-of-day value; it is never a valid start.
"""

import re
from datetime import time

from scheduler.errors import InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60

# Default calendar grid used for snapping and resize deltas
GRID_MINUTES = 5

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def to_minutes(value: time | str) -> int:
    """
    Convert a clock time to minutes since midnight.

    Accepts ``datetime.time`` or "HH:MM" / "HH:MM:SS" strings. Seconds are
    truncated. "24:00" maps to 1440.

    Raises:
        InvalidTimeFormat: For anything that is not a valid 24h clock time
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise InvalidTimeFormat(
            f"Unsupported time value: {value!r}", {"value": repr(value)}
        )

    match = _CLOCK_RE.match(value.strip())
    if not match:
        raise InvalidTimeFormat(f"Invalid time format: {value!r}", {"value": value})

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)

    if hours == 24 and minutes == 0 and seconds == 0:
        return MINUTES_PER_DAY
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidTimeFormat(f"Invalid time format: {value!r}", {"value": value})

    return hours * 60 + minutes


def from_minutes(minutes: int) -> time:
    """Inverse of to_minutes for 0..1439."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise InvalidTimeFormat(
            f"Minutes out of range for a clock time: {minutes}", {"value": minutes}
        )
    return time(hour=minutes // 60, minute=minutes % 60)


def format_minutes(minutes: int) -> str:
    """Render minutes as "HH:MM" (1440 renders as "24:00")."""
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise InvalidTimeFormat(
            f"Minutes out of range for a clock time: {minutes}", {"value": minutes}
        )
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_minutes(value: time | str, minutes: int) -> time:
    """Shift a clock time by ``minutes`` without leaving the day."""
    return from_minutes(to_minutes(value) + minutes)


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open overlap test: touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def clamp(value: int | float, low: int | float, high: int | float) -> int | float:
    return max(low, min(value, high))


def snap(value: int | float, grid: int = GRID_MINUTES) -> int:
    """Round to the nearest multiple of ``grid`` (halves round up)."""
    if grid <= 0:
        raise ValueError("grid must be positive")
    return int((value + grid / 2) // grid) * grid
