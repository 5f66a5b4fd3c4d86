"""Appointment scheduling core for the clinic booking client."""

from .allocator import (
    is_bookable,
    remaining_capacity,
    validate_booking_attempt,
    validate_cancellation_attempt,
    validate_cancellation_reason,
)
from .booking import BookingState, BookingWorkflow
from .cancellation import CancellationState, CancellationWorkflow
from .catalog import ScheduleCatalog, entries_for_date, format_schedule_date, unique_dates
from .errors import (
    AuthError,
    BackendError,
    BackendRejected,
    CapacityExceeded,
    ConflictError,
    DataIntegrityError,
    EmptyReason,
    NotCancelable,
    ScheduleClosed,
    SchedulingError,
    TransportError,
    ValidationError,
    WorkflowStateError,
)
from .models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    PatientContext,
    ScheduleEntry,
    ScheduleStatus,
    Specialty,
)
from .outcomes import FailureKind, WorkflowFailure, WorkflowOutcome
from .ports import ClinicBackend

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AuthError",
    "BackendError",
    "BackendRejected",
    "BookingRequest",
    "BookingState",
    "BookingWorkflow",
    "CancellationRequest",
    "CancellationState",
    "CancellationWorkflow",
    "CapacityExceeded",
    "ClinicBackend",
    "ConflictError",
    "DataIntegrityError",
    "Doctor",
    "EmptyReason",
    "FailureKind",
    "NotCancelable",
    "Patient",
    "PatientContext",
    "ScheduleCatalog",
    "ScheduleClosed",
    "ScheduleEntry",
    "ScheduleStatus",
    "SchedulingError",
    "Specialty",
    "TransportError",
    "ValidationError",
    "WorkflowFailure",
    "WorkflowOutcome",
    "WorkflowStateError",
    "entries_for_date",
    "format_schedule_date",
    "is_bookable",
    "remaining_capacity",
    "unique_dates",
    "validate_booking_attempt",
    "validate_cancellation_attempt",
    "validate_cancellation_reason",
]
