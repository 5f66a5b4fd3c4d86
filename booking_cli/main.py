"""Command line entry point for booking and canceling clinic appointments."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO

from connector.clinic_client import ClinicAPIClient
from scheduling import (
    BookingState,
    BookingWorkflow,
    CancellationWorkflow,
    DataIntegrityError,
    PatientContext,
    SchedulingError,
    ValidationError,
    WorkflowOutcome,
    format_schedule_date,
    is_bookable,
    remaining_capacity,
)
from scheduling.ports import ClinicBackend, ClinicDirectory

LOG_PATH = Path(os.getenv("CLINIC_TASK_LOG", "task_log.json"))

logger = logging.getLogger(__name__)

Subject = Dict[str, Optional[str]]


def _isoformat_z(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class TaskRecord:
    """One booking or cancellation attempt as written to the task log."""

    workflow: str
    status: str
    user_id: str
    started_at: datetime
    completed_at: datetime
    doctor_id: Optional[str] = None
    schedule_entry_id: Optional[str] = None
    appointment_id: Optional[str] = None
    appointment_status: Optional[str] = None
    failure_kind: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data = {key: value for key, value in asdict(self).items() if value is not None}
        data["started_at"] = _isoformat_z(self.started_at)
        data["completed_at"] = _isoformat_z(self.completed_at)
        return data


class TaskLogger:
    """Appends :class:`TaskRecord` entries to a JSON list on disk."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._lock = threading.Lock()
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: TaskRecord) -> None:
        with self._lock:
            history = self.read_history()
            history.append(record.to_dict())
            self._log_path.write_text(json.dumps(history, indent=2) + "\n", encoding="utf-8")

    def read_history(self) -> List[Dict[str, object]]:
        if not self._log_path.exists():
            return []
        content = self._log_path.read_text(encoding="utf-8").strip()
        if not content:
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Task log {self._log_path} is not valid JSON: {exc.msg}") from exc
        if not isinstance(data, list):
            raise ValueError(f"Task log {self._log_path} must hold a JSON list")
        return data


def execute_with_logging(
    workflow: str,
    action: Callable[[], Optional[WorkflowOutcome]],
    task_logger: TaskLogger,
    *,
    user_id: str,
    subject: Callable[[], Subject],
) -> Optional[WorkflowOutcome]:
    """Run a workflow step and record which doctor, schedule and appointment it touched.

    ``subject`` is read after the step so that ids chosen during it are
    recorded; the outcome's appointment, when present, takes precedence.
    """

    started_at = datetime.now(UTC)
    outcome: Optional[WorkflowOutcome] = None
    status = "success"
    message: Optional[str] = None
    try:
        outcome = action()
        if outcome is None:
            status = "ignored"
        elif not outcome.success:
            status = "failed"
        return outcome
    except ValidationError as exc:
        status, message = "rejected", str(exc)
        raise
    except Exception as exc:
        status, message = "failed", str(exc)
        raise
    finally:
        ids = subject()
        record = TaskRecord(
            workflow=workflow,
            status=status,
            user_id=user_id,
            started_at=started_at,
            completed_at=datetime.now(UTC),
            doctor_id=ids.get("doctor_id"),
            schedule_entry_id=ids.get("schedule_entry_id"),
            appointment_id=ids.get("appointment_id"),
            message=message,
        )
        if outcome is not None and outcome.appointment is not None:
            record.appointment_id = outcome.appointment.id
            record.schedule_entry_id = outcome.appointment.schedule_entry_id
            record.appointment_status = outcome.appointment.status.value
        if outcome is not None and outcome.failure is not None:
            record.failure_kind = outcome.failure.kind.value
            record.message = outcome.failure.message
        task_logger.append(record)


def _emit(payload: object, out: TextIO) -> None:
    out.write(json.dumps(payload, indent=2, default=str))
    out.write("\n")


def _require_user(args: argparse.Namespace) -> PatientContext:
    if not args.user_id:
        raise SystemExit("A user id is required (--user-id or CLINIC_USER_ID)")
    return PatientContext(user_id=str(args.user_id))


def run_doctors(backend: ClinicDirectory, args: argparse.Namespace, out: TextIO) -> int:
    if args.specialty:
        doctors = backend.list_doctors_by_specialty(args.specialty)
    else:
        doctors = backend.list_doctors()
    _emit(
        [{"id": doctor.id, "fullname": doctor.fullname, "specialty": doctor.specialty} for doctor in doctors],
        out,
    )
    return 0


def run_specialties(backend: ClinicDirectory, args: argparse.Namespace, out: TextIO) -> int:
    _emit([{"id": item.id, "name": item.name} for item in backend.list_specialties()], out)
    return 0


def run_schedules(backend: ClinicBackend, args: argparse.Namespace, out: TextIO) -> int:
    rows = []
    for entry in backend.get_schedules_for_doctor(args.doctor_id):
        try:
            remaining: Optional[int] = remaining_capacity(entry)
        except DataIntegrityError:
            remaining = None
        rows.append(
            {
                "id": entry.id,
                "date": format_schedule_date(entry.date),
                "shift": entry.shift,
                "time": f"{entry.start_time} - {entry.end_time}",
                "location": entry.location,
                "remaining": remaining,
                "bookable": is_bookable(entry),
            }
        )
    _emit(rows, out)
    return 0


def run_book(
    backend: ClinicBackend, args: argparse.Namespace, out: TextIO, task_logger: TaskLogger
) -> int:
    context = _require_user(args)
    workflow = BookingWorkflow(backend, context)

    def subject() -> Subject:
        entry = workflow.selected_entry
        return {"doctor_id": args.doctor_id, "schedule_entry_id": args.schedule or (entry.id if entry else None)}

    def book() -> Optional[WorkflowOutcome]:
        workflow.select_date(args.date)
        if args.schedule:
            workflow.select_schedule(args.schedule)
        elif workflow.selected_entry is None:
            raise ValueError(f"No bookable schedule on {args.date}; pass --schedule")
        return workflow.confirm()

    try:
        if workflow.start(args.doctor_id) is BookingState.SUBMITTED:
            execute_with_logging(
                "booking", lambda: workflow.outcome, task_logger, user_id=context.user_id, subject=subject
            )
            _emit(workflow.outcome.to_dict() if workflow.outcome else {}, out)
            return 1
        outcome = execute_with_logging("booking", book, task_logger, user_id=context.user_id, subject=subject)
    except (ValidationError, DataIntegrityError, ValueError, KeyError) as exc:
        _emit({"success": False, "error": str(exc)}, out)
        return 1
    if outcome is None:
        return 1
    _emit(outcome.to_dict(), out)
    return 0 if outcome.success else 1


def run_appointments(backend: ClinicBackend, args: argparse.Namespace, out: TextIO) -> int:
    patient = backend.get_patient_by_user_id(_require_user(args).user_id)
    _emit([item.to_payload() for item in backend.get_appointments_for_patient(patient.id)], out)
    return 0


def run_cancel(
    backend: ClinicBackend, args: argparse.Namespace, out: TextIO, task_logger: TaskLogger
) -> int:
    context = _require_user(args)
    patient = backend.get_patient_by_user_id(context.user_id)
    matches = [item for item in backend.get_appointments_for_patient(patient.id) if item.id == args.appointment_id]
    if not matches:
        _emit({"success": False, "error": f"Appointment {args.appointment_id} not found"}, out)
        return 1

    workflow = CancellationWorkflow(backend, matches[0], context)

    def subject() -> Subject:
        appointment = workflow.appointment
        return {
            "doctor_id": appointment.doctor_id,
            "schedule_entry_id": appointment.schedule_entry_id,
            "appointment_id": appointment.id,
        }

    def cancel() -> Optional[WorkflowOutcome]:
        workflow.begin()
        return workflow.confirm(args.reason)

    try:
        outcome = execute_with_logging(
            "cancellation", cancel, task_logger, user_id=context.user_id, subject=subject
        )
    except ValidationError as exc:
        _emit({"success": False, "error": str(exc)}, out)
        return 1
    if outcome is None:
        return 1
    _emit(outcome.to_dict(), out)
    return 0 if outcome.success else 1


def run_login(backend: ClinicAPIClient, args: argparse.Namespace, out: TextIO) -> int:
    session = backend.login(args.phone_number, args.password)
    _emit({"user_id": session.user_id, "fullname": session.fullname, "token": session.token}, out)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clinic appointment booking client")
    parser.add_argument("--user-id", default=os.getenv("CLINIC_USER_ID"), help="Authenticated user id")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--task-log", type=Path, default=LOG_PATH, help="JSON file recording outcomes")
    commands = parser.add_subparsers(dest="command", required=True)

    login = commands.add_parser("login", help="Authenticate and print the bearer token")
    login.add_argument("phone_number")
    login.add_argument("--password", required=True)

    doctors = commands.add_parser("doctors", help="List doctors")
    doctors.add_argument("--specialty", help="Only doctors of this specialty id")

    commands.add_parser("specialties", help="List specialties")

    schedules = commands.add_parser("schedules", help="Show a doctor's published schedule")
    schedules.add_argument("doctor_id")

    book = commands.add_parser("book", help="Book an appointment")
    book.add_argument("doctor_id")
    book.add_argument("--date", required=True, help="Schedule date (YYYY-MM-DD)")
    book.add_argument("--schedule", help="Schedule entry id; defaults to the first bookable shift")

    commands.add_parser("appointments", help="List the patient's appointments")

    cancel = commands.add_parser("cancel", help="Cancel a pending appointment")
    cancel.add_argument("appointment_id")
    cancel.add_argument("--reason", required=True)
    return parser.parse_args(argv)


def main(
    argv: Optional[List[str]] = None,
    *,
    backend: Optional[ClinicBackend] = None,
    out: TextIO = sys.stdout,
) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    backend = backend or ClinicAPIClient()
    task_logger = TaskLogger(args.task_log)

    try:
        if args.command == "login":
            return run_login(backend, args, out)
        if args.command == "doctors":
            return run_doctors(backend, args, out)
        if args.command == "specialties":
            return run_specialties(backend, args, out)
        if args.command == "schedules":
            return run_schedules(backend, args, out)
        if args.command == "book":
            return run_book(backend, args, out, task_logger)
        if args.command == "appointments":
            return run_appointments(backend, args, out)
        return run_cancel(backend, args, out, task_logger)
    except SchedulingError as exc:
        logger.error("%s command failed: %s", args.command, exc)
        _emit({"success": False, "error": str(exc)}, out)
        return 1


if __name__ == "__main__":
    sys.exit(main())
