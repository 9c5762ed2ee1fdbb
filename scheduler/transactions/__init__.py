"""
Atomic transaction handlers.

BookingGuard serializes writes per (resource, date): re-read under lock,
conflict check, write, commit, then broadcast.
"""

from scheduler.transactions.booking_transaction import (
    Accepted,
    BookingGuard,
    ProposalOutcome,
    Rejected,
    apply_reschedule,
)

__all__ = [
    "Accepted",
    "BookingGuard",
    "ProposalOutcome",
    "Rejected",
    "apply_reschedule",
]
