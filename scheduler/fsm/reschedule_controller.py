"""
RescheduleController - commits gesture candidates through the booking guard.

The controller owns no scheduling logic: it forwards the candidate to an
injected ``propose`` callable (normally BookingGuard.reschedule bound to the
caller's principal) and maps the outcome back onto the gesture:

- Accepted -> Idle, then the reconciling refresh runs
- Rejected -> ConflictPrompt (or straight back to Idle when forcing is not
  allowed for this caller)
- any SchedulingError -> Idle, candidate reverted
- any other failure of the call (network, timeout) -> Idle with TRANSIENT_ERROR
"""

import logging
from collections.abc import Awaitable, Callable

from scheduler.errors import SchedulingError, TransientError
from scheduler.fsm.models import Candidate, GestureResult, GestureState
from scheduler.fsm.reschedule_fsm import RescheduleGesture
from scheduler.transactions.booking_transaction import Accepted, ProposalOutcome

logger = logging.getLogger(__name__)

ProposeFn = Callable[[Candidate, bool], Awaitable[ProposalOutcome]]


class RescheduleController:
    def __init__(
        self,
        gesture: RescheduleGesture,
        propose: ProposeFn,
        on_committed: Callable[[], Awaitable[None]] | None = None,
        can_force: bool = True,
    ) -> None:
        self.gesture = gesture
        self._propose = propose
        self._on_committed = on_committed
        self._can_force = can_force

    async def release(self, at_ms: int) -> GestureResult:
        """Pointer up: propose the candidate if the gesture reached Committing."""
        result = self.gesture.release(at_ms)
        if not result.success or self.gesture.state != GestureState.COMMITTING:
            return result
        return await self._commit(result.candidate, force=False)

    async def confirm_force(self) -> GestureResult:
        """Re-issue the rejected candidate with force=True."""
        result = self.gesture.confirm_force()
        if not result.success:
            return result
        return await self._commit(result.candidate, force=True)

    def cancel(self) -> GestureResult:
        return self.gesture.cancel()

    async def _commit(self, candidate: Candidate, force: bool) -> GestureResult:
        try:
            outcome = await self._propose(candidate, force)
        except SchedulingError as e:
            logger.info(
                f"Reschedule of booking {candidate.booking_id} failed: {e.error_code}",
                extra={"booking_id": str(candidate.booking_id)},
            )
            return self.gesture.failed(e.error_code, e.error_message)
        except Exception as e:
            logger.error(
                f"Reschedule of booking {candidate.booking_id} could not be proposed: {e}",
                extra={"booking_id": str(candidate.booking_id)},
                exc_info=True,
            )
            return self.gesture.failed(
                TransientError.error_code, "The change could not be saved right now, please retry"
            )

        if isinstance(outcome, Accepted):
            result = self.gesture.accepted()
            if self._on_committed is not None:
                await self._on_committed()
            return result

        if force or not self._can_force:
            return self.gesture.failed(outcome.error_code, outcome.error_message)

        return self.gesture.rejected(outcome.conflicting_booking_id)
