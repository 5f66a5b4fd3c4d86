"""Booking workflow: doctor, then date, then schedule entry, then confirmation.

The workflow keeps a read-through snapshot of the doctor's schedule. It never
adjusts ``booked_patients`` itself; after any submission the snapshot is
flagged stale and must be re-fetched.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from . import allocator
from .catalog import DateLike, ScheduleCatalog, as_date
from .errors import (
    BackendError,
    ConflictError,
    DataIntegrityError,
    SchedulingError,
    ValidationError,
    WorkflowStateError,
)
from .models import Appointment, BookingRequest, Doctor, Patient, PatientContext, ScheduleEntry
from .outcomes import FailureKind, WorkflowFailure, WorkflowOutcome
from .ports import ClinicBackend

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    SELECTING_DOCTOR = "selecting_doctor"
    SELECTING_DATE = "selecting_date"
    SELECTING_SCHEDULE = "selecting_schedule"
    CONFIRMING = "confirming"
    SUBMITTED = "submitted"


# Current state -> states reachable from it.
VALID_TRANSITIONS: Dict[BookingState, Tuple[BookingState, ...]] = {
    BookingState.SELECTING_DOCTOR: (BookingState.SELECTING_DATE, BookingState.SUBMITTED),
    BookingState.SELECTING_DATE: (BookingState.SELECTING_SCHEDULE,),
    BookingState.SELECTING_SCHEDULE: (BookingState.SELECTING_SCHEDULE, BookingState.CONFIRMING),
    BookingState.CONFIRMING: (
        BookingState.SELECTING_SCHEDULE,
        BookingState.CONFIRMING,
        BookingState.SUBMITTED,
    ),
    # Only a conflict lets the user go back and pick another entry.
    BookingState.SUBMITTED: (BookingState.SELECTING_SCHEDULE,),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_identifier(value: object, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{label} must be a non-empty identifier")
    return str(value).strip()


class BookingWorkflow:
    """Drives one patient's booking attempt against one doctor's schedule."""

    def __init__(
        self,
        backend: ClinicBackend,
        context: PatientContext,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._backend = backend
        self._context = context
        self._clock = clock
        self._state = BookingState.SELECTING_DOCTOR
        self._submit_lock = threading.Lock()

        self.doctor: Optional[Doctor] = None
        self.patient: Optional[Patient] = None
        self.catalog: Optional[ScheduleCatalog] = None
        self.catalog_stale = False
        self.selected_date: Optional[date] = None
        self.selected_entry: Optional[ScheduleEntry] = None
        self.outcome: Optional[WorkflowOutcome] = None
        self.last_error: Optional[ValidationError] = None
        self.refresh_failure: Optional[WorkflowFailure] = None
        self._reselect_allowed = False

    @property
    def state(self) -> BookingState:
        return self._state

    @property
    def appointment(self) -> Optional[Appointment]:
        return self.outcome.appointment if self.outcome else None

    @property
    def failure(self) -> Optional[WorkflowFailure]:
        return self.outcome.failure if self.outcome else None

    @property
    def is_submitting(self) -> bool:
        return self._submit_lock.locked()

    def _transition(self, target: BookingState) -> None:
        if target not in VALID_TRANSITIONS.get(self._state, ()):
            raise WorkflowStateError(f"Cannot move from {self._state.value} to {target.value}")
        logger.debug("Booking workflow %s -> %s", self._state.value, target.value)
        self._state = target

    def _require(self, *states: BookingState) -> None:
        if self._state not in states:
            expected = ", ".join(state.value for state in states)
            raise WorkflowStateError(f"Step requires state {expected}; workflow is {self._state.value}")

    def _require_catalog(self) -> ScheduleCatalog:
        if self.catalog is None:
            raise WorkflowStateError("Schedules have not been loaded")
        return self.catalog

    def start(self, doctor_id: str) -> BookingState:
        """Load the doctor, their schedules and the current patient concurrently."""

        self._require(BookingState.SELECTING_DOCTOR)
        doctor_id = _validate_identifier(doctor_id, "doctor_id")
        user_id = _validate_identifier(self._context.user_id, "user_id")

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="booking-load") as executor:
            doctor_future = executor.submit(self._backend.get_doctor, doctor_id)
            schedules_future = executor.submit(self._backend.get_schedules_for_doctor, doctor_id)
            patient_future = executor.submit(self._backend.get_patient_by_user_id, user_id)

            errors: List[SchedulingError] = []
            results = []
            for future in (doctor_future, schedules_future, patient_future):
                try:
                    results.append(future.result())
                except (BackendError, DataIntegrityError) as exc:
                    errors.append(exc)
                    results.append(None)

        if errors:
            logger.error("Failed to load booking data for doctor %s: %s", doctor_id, errors[0])
            self.outcome = WorkflowOutcome(
                success=False,
                failure=WorkflowFailure(FailureKind.LOAD, f"Failed to load doctor or patient: {errors[0]}"),
            )
            self._transition(BookingState.SUBMITTED)
            return self._state

        doctor, entries, patient = results
        self.doctor = doctor
        self.patient = patient
        self.catalog = ScheduleCatalog(doctor_id=doctor_id, entries=tuple(entries))
        logger.debug("Loaded %d schedule entries for doctor %s", len(self.catalog), doctor_id)
        self._transition(BookingState.SELECTING_DATE)
        return self._state

    def available_dates(self) -> List[date]:
        return self._require_catalog().dates()

    def entries_for_selected_date(self) -> List[ScheduleEntry]:
        if self.selected_date is None:
            return []
        return self._require_catalog().for_date(self.selected_date)

    @contextmanager
    def _selection_step(self, step: str) -> Iterator[None]:
        # Selection shares the submit lock so state cannot move under an in-flight confirm.
        if not self._submit_lock.acquire(blocking=False):
            raise WorkflowStateError(f"Cannot {step} while a booking submission is in flight")
        try:
            yield
        finally:
            self._submit_lock.release()

    def select_date(self, value: DateLike) -> List[ScheduleEntry]:
        """Pick a date and return its entries; the first entry is pre-selected if bookable."""

        with self._selection_step("select a date"):
            self._require(BookingState.SELECTING_DATE, BookingState.SELECTING_SCHEDULE, BookingState.CONFIRMING)
            catalog = self._require_catalog()
            target = as_date(value)
            if target not in catalog.dates():
                raise ValueError(f"No schedules published on {target.isoformat()}")

            self.selected_date = target
            self.selected_entry = None
            self.last_error = None
            entries = catalog.for_date(target)
            if entries and allocator.is_bookable(entries[0]):
                self.selected_entry = entries[0]
            self._transition(BookingState.SELECTING_SCHEDULE)
            return entries

    def select_schedule(self, entry_id: str) -> ScheduleEntry:
        """Choose an entry; non-bookable entries raise and leave the state unchanged."""

        with self._selection_step("select a schedule"):
            self._require(BookingState.SELECTING_SCHEDULE, BookingState.CONFIRMING)
            entry = self._require_catalog().get(entry_id)
            try:
                allocator.validate_booking_attempt(entry)
            except ValidationError as exc:
                self.last_error = exc
                logger.debug("Rejected selection of schedule %s: %s", entry.id, exc)
                raise
            except DataIntegrityError:
                logger.error("Schedule %s has inconsistent capacity and cannot be booked", entry.id)
                raise

            self.last_error = None
            self.selected_date = entry.date
            self.selected_entry = entry
            self._transition(BookingState.CONFIRMING)
            return entry

    def confirm(self) -> Optional[WorkflowOutcome]:
        """Submit the booking.

        Returns ``None`` when a submission is already in flight. Local
        validation failures raise and keep the workflow in ``CONFIRMING``;
        backend failures end the workflow with a failed outcome.
        """

        if not self._submit_lock.acquire(blocking=False):
            logger.warning("Ignoring booking confirmation while a submission is in flight")
            return None
        try:
            if self._state is BookingState.SELECTING_SCHEDULE and self.selected_entry is not None:
                self._transition(BookingState.CONFIRMING)
            self._require(BookingState.CONFIRMING)
            return self._submit()
        finally:
            self._submit_lock.release()

    def _submit(self) -> WorkflowOutcome:
        entry = self.selected_entry
        if entry is None or self.patient is None or self.doctor is None:
            raise WorkflowStateError("A schedule, doctor and patient are required before confirming")

        try:
            allocator.validate_booking_attempt(entry)
        except ValidationError as exc:
            self.last_error = exc
            raise

        request = BookingRequest(
            patient_id=self.patient.id,
            doctor_id=self.doctor.id,
            schedule_entry_id=entry.id,
            requested_at=self._clock(),
        )
        logger.debug("Submitting booking for schedule %s", entry.id)
        try:
            appointment = self._backend.create_appointment(request)
        except (BackendError, DataIntegrityError) as exc:
            failure = WorkflowFailure.from_error(exc)
            if isinstance(exc, ConflictError):
                logger.warning("Backend rejected schedule %s as unavailable: %s", entry.id, exc)
                self._reselect_allowed = True
            else:
                logger.error("Booking for schedule %s failed: %s", entry.id, exc)
            self.outcome = WorkflowOutcome(success=False, failure=failure, refresh_required=True)
        else:
            logger.info("Booked appointment %s on schedule %s", appointment.id, entry.id)
            self.outcome = WorkflowOutcome(success=True, appointment=appointment, refresh_required=True)

        self.catalog_stale = True
        self.last_error = None
        self._transition(BookingState.SUBMITTED)
        return self.outcome

    def _reload_catalog(self) -> ScheduleCatalog:
        catalog = self._require_catalog()
        self.catalog = ScheduleCatalog(
            doctor_id=catalog.doctor_id,
            entries=tuple(self._backend.get_schedules_for_doctor(catalog.doctor_id)),
        )
        self.catalog_stale = False
        self.refresh_failure = None
        if self.selected_entry is not None:
            try:
                self.selected_entry = self.catalog.get(self.selected_entry.id)
            except KeyError:
                self.selected_entry = None
        return self.catalog

    def _record_refresh_failure(self, exc: SchedulingError) -> WorkflowFailure:
        logger.error("Failed to refresh schedules for doctor %s: %s", self._require_catalog().doctor_id, exc)
        self.refresh_failure = WorkflowFailure(FailureKind.LOAD, f"Failed to refresh schedules: {exc}")
        return self.refresh_failure

    def refresh_schedules(self) -> Optional[ScheduleCatalog]:
        """Replace the schedule snapshot with a fresh copy from the backend.

        On a backend failure the previous snapshot is kept, still flagged
        stale, ``refresh_failure`` describes the problem and ``None`` is
        returned.
        """

        self._require_catalog()
        try:
            return self._reload_catalog()
        except (BackendError, DataIntegrityError) as exc:
            self._record_refresh_failure(exc)
            return None

    def choose_another_schedule(self) -> Optional[List[ScheduleEntry]]:
        """After a slot conflict, reload schedules and reopen selection for the same date.

        If the reload fails the workflow stays ``SUBMITTED`` with a ``LOAD``
        failure and ``None`` is returned; the call can simply be repeated.
        """

        with self._selection_step("choose another schedule"):
            self._require(BookingState.SUBMITTED)
            if not self._reselect_allowed:
                raise WorkflowStateError("Only a slot conflict can be recovered by choosing another schedule")

            try:
                self._reload_catalog()
            except (BackendError, DataIntegrityError) as exc:
                failure = self._record_refresh_failure(exc)
                self.outcome = WorkflowOutcome(success=False, failure=failure, refresh_required=True)
                return None

            self._reselect_allowed = False
            self.selected_entry = None
            self.outcome = None
            self._transition(BookingState.SELECTING_SCHEDULE)
            return self.entries_for_selected_date()


__all__ = ["BookingState", "BookingWorkflow", "VALID_TRANSITIONS"]
