"""Terminal results reported by the booking and cancellation workflows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import (
    AuthError,
    BackendError,
    ConflictError,
    DataIntegrityError,
    SchedulingError,
    TransportError,
)
from .models import Appointment

CONFLICT_MESSAGE = "This slot is no longer available, please choose another."


class FailureKind(str, Enum):
    LOAD = "load"
    CONFLICT = "conflict"
    REJECTED = "rejected"
    TRANSPORT = "transport"
    DATA_INTEGRITY = "data_integrity"


@dataclass(frozen=True)
class WorkflowFailure:
    kind: FailureKind
    message: str

    @classmethod
    def from_error(cls, exc: SchedulingError) -> "WorkflowFailure":
        """Map a backend-side exception onto a user-presentable failure."""

        if isinstance(exc, ConflictError):
            return cls(FailureKind.CONFLICT, CONFLICT_MESSAGE)
        if isinstance(exc, TransportError):
            return cls(FailureKind.TRANSPORT, f"The clinic service is unavailable: {exc}")
        if isinstance(exc, DataIntegrityError):
            return cls(FailureKind.DATA_INTEGRITY, f"The clinic service returned inconsistent data: {exc}")
        if isinstance(exc, AuthError):
            return cls(FailureKind.REJECTED, f"Your session is no longer valid: {exc}")
        if isinstance(exc, BackendError):
            return cls(FailureKind.REJECTED, str(exc) or "The clinic service refused the request.")
        return cls(FailureKind.REJECTED, str(exc))


@dataclass(frozen=True)
class WorkflowOutcome:
    success: bool
    appointment: Optional[Appointment] = None
    failure: Optional[WorkflowFailure] = None
    refresh_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "refresh_required": self.refresh_required,
        }
        if self.appointment is not None:
            data["appointment"] = self.appointment.to_payload()
        if self.failure is not None:
            data["failure"] = {"kind": self.failure.kind.value, "message": self.failure.message}
        return data


__all__ = ["CONFLICT_MESSAGE", "FailureKind", "WorkflowFailure", "WorkflowOutcome"]
