"""Cancellation workflow for a single pending appointment."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from . import allocator
from .errors import BackendError, DataIntegrityError, NotCancelable, WorkflowStateError
from .models import Appointment, CancellationRequest, PatientContext
from .outcomes import WorkflowFailure, WorkflowOutcome
from .ports import ClinicBackend

logger = logging.getLogger(__name__)


class CancellationState(str, Enum):
    VIEWING = "viewing"
    REASON_ENTRY = "reason_entry"
    CONFIRMING = "confirming"
    SUBMITTED = "submitted"


VALID_TRANSITIONS: Dict[CancellationState, Tuple[CancellationState, ...]] = {
    CancellationState.VIEWING: (CancellationState.REASON_ENTRY,),
    CancellationState.REASON_ENTRY: (CancellationState.VIEWING, CancellationState.CONFIRMING),
    CancellationState.CONFIRMING: (CancellationState.SUBMITTED,),
    CancellationState.SUBMITTED: (),
}


class CancellationWorkflow:
    """Collects a reason and submits the cancellation of one appointment.

    On success the caller is told, through ``on_invalidate`` and
    ``outcome.refresh_required``, to drop any cached schedules or
    appointments: a slot was released and local copies are now stale.
    """

    def __init__(
        self,
        backend: ClinicBackend,
        appointment: Appointment,
        context: PatientContext,
        *,
        on_invalidate: Optional[Callable[[Appointment], None]] = None,
    ) -> None:
        self._backend = backend
        self._context = context
        self._on_invalidate = on_invalidate
        self._state = CancellationState.VIEWING
        self._submit_lock = threading.Lock()

        self.appointment = appointment
        self.reason = ""
        self.outcome: Optional[WorkflowOutcome] = None

    @property
    def state(self) -> CancellationState:
        return self._state

    @property
    def can_cancel(self) -> bool:
        """Whether a cancel action should be offered for the appointment at all."""

        try:
            allocator.validate_cancellation_attempt(self.appointment)
        except NotCancelable:
            return False
        return True

    @property
    def can_confirm(self) -> bool:
        return self._state is CancellationState.REASON_ENTRY and bool(self.reason.strip())

    @property
    def is_submitting(self) -> bool:
        return self._submit_lock.locked()

    def _transition(self, target: CancellationState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise WorkflowStateError(f"Cannot move from {self._state.value} to {target.value}")
        logger.debug("Cancellation workflow %s -> %s", self._state.value, target.value)
        self._state = target

    def begin(self) -> CancellationState:
        allocator.validate_cancellation_attempt(self.appointment)
        self._transition(CancellationState.REASON_ENTRY)
        return self._state

    def back(self) -> CancellationState:
        self.reason = ""
        self._transition(CancellationState.VIEWING)
        return self._state

    def set_reason(self, text: Optional[str]) -> bool:
        """Record the reason text; returns whether confirmation is now allowed."""

        if self._state is not CancellationState.REASON_ENTRY:
            raise WorkflowStateError(f"Reasons are entered in reason_entry; workflow is {self._state.value}")
        self.reason = text or ""
        return self.can_confirm

    def confirm(self, reason: Optional[str] = None) -> Optional[WorkflowOutcome]:
        """Submit the cancellation; returns ``None`` if one is already in flight."""

        if not self._submit_lock.acquire(blocking=False):
            logger.warning("Ignoring cancellation of %s while a submission is in flight", self.appointment.id)
            return None
        try:
            if self._state is not CancellationState.REASON_ENTRY:
                raise WorkflowStateError(f"Cannot confirm from {self._state.value}")
            if reason is not None:
                self.reason = reason
            cleaned = allocator.validate_cancellation_reason(self.reason)
            self._transition(CancellationState.CONFIRMING)
            return self._submit(cleaned)
        finally:
            self._submit_lock.release()

    def _submit(self, reason: str) -> WorkflowOutcome:
        request = CancellationRequest(
            appointment_id=self.appointment.id,
            reason=reason,
            actor_id=self._context.effective_actor_id,
        )
        try:
            updated = self._backend.set_appointment_status(request)
        except (BackendError, DataIntegrityError) as exc:
            logger.error("Cancellation of appointment %s failed: %s", self.appointment.id, exc)
            self.outcome = WorkflowOutcome(success=False, failure=WorkflowFailure.from_error(exc))
            self._transition(CancellationState.SUBMITTED)
            return self.outcome

        logger.info("Canceled appointment %s", updated.id)
        self.appointment = updated
        self.outcome = WorkflowOutcome(success=True, appointment=updated, refresh_required=True)
        self._transition(CancellationState.SUBMITTED)
        if self._on_invalidate is not None:
            self._on_invalidate(updated)
        return self.outcome


__all__ = ["CancellationState", "CancellationWorkflow", "VALID_TRANSITIONS"]
