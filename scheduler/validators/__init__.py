"""
Transaction Validators.

Business-rule checks that run inside the booking guard transaction
(slot overlap, per-client daily limit).
"""

from scheduler.validators.transaction_validators import (
    find_conflicting_bookings,
    validate_daily_limit,
    validate_slot_availability,
)

__all__ = [
    "find_conflicting_bookings",
    "validate_daily_limit",
    "validate_slot_availability",
]
