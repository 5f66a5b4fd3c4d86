"""Exception taxonomy shared by the scheduling core and its backend adapters."""

from __future__ import annotations


class SchedulingError(RuntimeError):
    """Base exception for clinic scheduling errors."""


class ValidationError(SchedulingError):
    """Raised by local pre-flight checks; never involves the backend."""


class CapacityExceeded(ValidationError):
    """Raised when a schedule entry has no remaining capacity."""

    def __init__(self, entry_id: str, message: str = "") -> None:
        self.entry_id = entry_id
        super().__init__(message or f"Schedule {entry_id} is fully booked")


class ScheduleClosed(ValidationError):
    """Raised when a schedule entry is not open for booking."""

    def __init__(self, entry_id: str, message: str = "") -> None:
        self.entry_id = entry_id
        super().__init__(message or f"Schedule {entry_id} is closed for booking")


class NotCancelable(ValidationError):
    """Raised when an appointment is not in a cancelable status."""

    def __init__(self, appointment_id: str, status: object) -> None:
        self.appointment_id = appointment_id
        self.status = status
        label = getattr(status, "value", status)
        super().__init__(
            f"Appointment {appointment_id} cannot be canceled while {label}"
        )


class EmptyReason(ValidationError):
    """Raised when a cancellation is attempted without a reason."""

    def __init__(self) -> None:
        super().__init__("A cancellation reason is required")


class DataIntegrityError(SchedulingError):
    """Raised when backend data violates a scheduling invariant."""


class WorkflowStateError(SchedulingError):
    """Raised when a workflow step is invoked from a state that does not allow it."""


class BackendError(SchedulingError):
    """Base exception for failures reported by, or on the way to, the backend."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(BackendError):
    """Raised when the backend refuses a booking because the slot was taken."""


class BackendRejected(BackendError):
    """Raised when the backend refuses a request for a business reason."""


class AuthError(BackendError):
    """Raised when the backend refuses the caller's credentials."""


class TransportError(BackendError):
    """Raised on network failures, timeouts and 5xx responses."""


__all__ = [
    "AuthError",
    "BackendError",
    "BackendRejected",
    "CapacityExceeded",
    "ConflictError",
    "DataIntegrityError",
    "EmptyReason",
    "NotCancelable",
    "ScheduleClosed",
    "SchedulingError",
    "TransportError",
    "ValidationError",
    "WorkflowStateError",
]
