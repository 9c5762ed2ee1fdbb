"""
Scheduling error taxonomy.

Every error carries an ``error_code`` / ``error_message`` / ``details`` triple,
the same shape the API returns to callers:

- InvalidTimeFormat, InvalidDuration: caller errors, raised before any I/O
- ResourceNotFound, BookingNotFound: unknown ids
- ResourceUnavailable: target resource is off on the requested date
- Conflict: overlapping booking (a business outcome, not a fault)
- TransientError: transaction timeout / serialization failure after retry
- Unauthorized: capability check failed
- BookingNotMutable: booking is cancelled or finished
- BookingLimitExceeded: per-client daily limit reached
"""

from typing import Any


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    error_code = "SCHEDULING_ERROR"
    retryable = False

    def __init__(self, error_message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_message)
        self.error_message = error_message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "error_message": self.error_message,
            "details": self.details,
        }


class InvalidTimeFormat(SchedulingError):
    error_code = "INVALID_TIME_FORMAT"


class InvalidDuration(SchedulingError):
    error_code = "INVALID_DURATION"


class ResourceNotFound(SchedulingError):
    error_code = "RESOURCE_NOT_FOUND"


class BookingNotFound(SchedulingError):
    error_code = "BOOKING_NOT_FOUND"


class ResourceUnavailable(SchedulingError):
    error_code = "RESOURCE_UNAVAILABLE"


class Conflict(SchedulingError):
    error_code = "SLOT_TAKEN"

    def __init__(
        self,
        error_message: str,
        conflicting_booking_id: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error_message, details)
        self.conflicting_booking_id = conflicting_booking_id
        if conflicting_booking_id is not None:
            self.details.setdefault("conflicting_booking_id", str(conflicting_booking_id))


class TransientError(SchedulingError):
    error_code = "TRANSIENT_ERROR"
    retryable = True


class Unauthorized(SchedulingError):
    error_code = "UNAUTHORIZED"


class BookingNotMutable(SchedulingError):
    error_code = "BOOKING_NOT_MUTABLE"


class BookingLimitExceeded(SchedulingError):
    error_code = "BOOKING_LIMIT_EXCEEDED"
