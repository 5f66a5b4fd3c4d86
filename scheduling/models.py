"""Domain models for the clinic scheduling core.

Payloads arriving from the backend are normalised here, at the boundary, so
that the allocator and the workflows only ever see typed values. The backend
mixes camelCase and snake_case keys, hence the key fallbacks in each parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
import unicodedata
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import DataIntegrityError

TIME_FORMAT = "%H:%M"


class ScheduleStatus(str, Enum):
    """Publication status of a doctor's schedule entry."""

    ACTIVE = "active"
    CLOSED = "closed"

    @classmethod
    def from_label(cls, label: Any) -> "ScheduleStatus":
        if label is None or label == "":
            return cls.ACTIVE
        if isinstance(label, bool):
            return cls.ACTIVE if label else cls.CLOSED
        normalized = str(label).strip().lower()
        if normalized in {"active", "open", "1", "true"}:
            return cls.ACTIVE
        if normalized in {"closed", "inactive", "0", "false"}:
            return cls.CLOSED
        raise DataIntegrityError(f"Unknown schedule status {label!r}")


class AppointmentStatus(str, Enum):
    """Closed set of appointment states; backend labels map onto it."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    REJECTED = "rejected"

    @classmethod
    def from_label(cls, label: Any) -> "AppointmentStatus":
        if isinstance(label, cls):
            return label
        normalized = unicodedata.normalize("NFC", str(label or "")).strip().lower()
        try:
            return _STATUS_LABELS[normalized]
        except KeyError:
            raise DataIntegrityError(f"Unknown appointment status {label!r}") from None


_STATUS_LABELS: Dict[str, AppointmentStatus] = {
    "chờ xác nhận": AppointmentStatus.PENDING,
    "chưa xác nhận": AppointmentStatus.PENDING,
    "pending": AppointmentStatus.PENDING,
    "pending-confirmation": AppointmentStatus.PENDING,
    "xác nhận": AppointmentStatus.CONFIRMED,
    "confirmed": AppointmentStatus.CONFIRMED,
    "hủy": AppointmentStatus.CANCELED,
    "huỷ": AppointmentStatus.CANCELED,
    "canceled": AppointmentStatus.CANCELED,
    "cancelled": AppointmentStatus.CANCELED,
    "từ chối": AppointmentStatus.REJECTED,
    "rejected": AppointmentStatus.REJECTED,
}

CANCELABLE_STATUSES = frozenset({AppointmentStatus.PENDING})


def _extract_first(
    payload: Mapping[str, Any],
    keys: Sequence[str],
    *,
    allow_missing: bool = False,
) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    if allow_missing:
        return None
    raise DataIntegrityError(f"Expected one of {keys!r} in payload but none were present")


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()[:10]).date()
        except ValueError as exc:
            raise DataIntegrityError(f"Dates must be ISO formatted, got {value!r}") from exc
    raise DataIntegrityError(f"Unsupported date value {value!r}")


def _coerce_time(value: Any) -> str:
    text = str(value).strip()
    try:
        return datetime.strptime(text[:5], TIME_FORMAT).strftime(TIME_FORMAT)
    except ValueError as exc:
        raise DataIntegrityError(f"Times must be HH:MM, got {value!r}") from exc


def _coerce_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise DataIntegrityError(f"{label} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DataIntegrityError(f"{label} must be an integer, got {value!r}") from exc


def _optional_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class ScheduleEntry:
    """One doctor-shift offering with a patient capacity."""

    id: str
    doctor_id: str
    date: date
    shift: str
    start_time: str
    end_time: str
    location: str
    max_patients: int
    booked_patients: int
    status: ScheduleStatus = ScheduleStatus.ACTIVE

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, doctor_id: Optional[str] = None) -> "ScheduleEntry":
        if not isinstance(payload, Mapping) or not payload:
            raise DataIntegrityError("Schedule payload must be a non-empty object")

        entry_id = _extract_first(payload, ("id", "scheduleId", "schedule_id", "doctorScheduleId"))
        owner = _extract_first(payload, ("doctorId", "doctor_id"), allow_missing=True)
        if owner is None:
            owner = doctor_id
        if owner is None:
            raise DataIntegrityError(f"Schedule {entry_id} does not name its doctor")

        return cls(
            id=str(entry_id),
            doctor_id=str(owner),
            date=_coerce_date(_extract_first(payload, ("date", "scheduleDate", "schedule_date"))),
            shift=_optional_str(_extract_first(payload, ("shift",), allow_missing=True)),
            start_time=_coerce_time(_extract_first(payload, ("start_time", "startTime"))),
            end_time=_coerce_time(_extract_first(payload, ("end_time", "endTime"))),
            location=_optional_str(_extract_first(payload, ("location",), allow_missing=True)),
            max_patients=_coerce_int(
                _extract_first(payload, ("maxPatients", "max_patients")), "maxPatients"
            ),
            booked_patients=_coerce_int(
                _extract_first(payload, ("bookedPatients", "booked_patients"), allow_missing=True) or 0,
                "bookedPatients",
            ),
            status=ScheduleStatus.from_label(_extract_first(payload, ("status",), allow_missing=True)),
        )

    def time_slots(self, interval_minutes: int = 30) -> List[str]:
        """Return the ``HH:MM`` marks from ``start_time`` to ``end_time`` inclusive."""

        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        start_hour, start_minute = (int(part) for part in self.start_time.split(":"))
        end_hour, end_minute = (int(part) for part in self.end_time.split(":"))
        current = start_hour * 60 + start_minute
        end = end_hour * 60 + end_minute

        slots: List[str] = []
        while current <= end:
            slots.append(f"{current // 60:02d}:{current % 60:02d}")
            current += interval_minutes
        return slots

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "doctorId": self.doctor_id,
            "date": self.date.isoformat(),
            "shift": self.shift,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "location": self.location,
            "maxPatients": self.max_patients,
            "bookedPatients": self.booked_patients,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Doctor:
    id: str
    fullname: str
    specialty: str = ""
    department: str = ""
    avatar_url: str = ""
    experience_years: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Doctor":
        if not isinstance(payload, Mapping) or not payload:
            raise DataIntegrityError("Doctor payload must be a non-empty object")
        experience = _extract_first(payload, ("experienceYears", "experience_years"), allow_missing=True)
        return cls(
            id=str(_extract_first(payload, ("doctorId", "doctor_id", "id"))),
            fullname=_optional_str(_extract_first(payload, ("fullname", "fullName", "name"), allow_missing=True)),
            specialty=_optional_str(_extract_first(payload, ("specialty",), allow_missing=True)),
            department=_optional_str(_extract_first(payload, ("department",), allow_missing=True)),
            avatar_url=_optional_str(_extract_first(payload, ("avatar_url", "avatarUrl"), allow_missing=True)),
            experience_years=None if experience is None else _coerce_int(experience, "experienceYears"),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class Specialty:
    id: str
    name: str
    description: str = ""
    icon: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Specialty":
        if not isinstance(payload, Mapping) or not payload:
            raise DataIntegrityError("Specialty payload must be a non-empty object")
        return cls(
            id=str(_extract_first(payload, ("id", "specialtyId"))),
            name=_optional_str(_extract_first(payload, ("name",), allow_missing=True)),
            description=_optional_str(_extract_first(payload, ("description",), allow_missing=True)),
            icon=_optional_str(_extract_first(payload, ("icon",), allow_missing=True)),
        )


@dataclass(frozen=True)
class Patient:
    id: str
    user_id: str
    fullname: str
    gender: Optional[int] = None
    date_of_birth: Optional[date] = None
    phone_number: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Patient":
        if not isinstance(payload, Mapping) or not payload:
            raise DataIntegrityError("Patient payload must be a non-empty object")
        gender = _extract_first(payload, ("gender",), allow_missing=True)
        birth = _extract_first(payload, ("dateOfBirth", "date_of_birth"), allow_missing=True)
        return cls(
            id=str(_extract_first(payload, ("id", "patientId", "patient_id"))),
            user_id=_optional_str(_extract_first(payload, ("userId", "user_id"), allow_missing=True)),
            fullname=_optional_str(_extract_first(payload, ("fullname", "fullName", "name"), allow_missing=True)),
            gender=None if gender is None else _coerce_int(gender, "gender"),
            date_of_birth=None if birth is None else _coerce_date(birth),
            phone_number=_optional_str(_extract_first(payload, ("phoneNumber", "phone_number"), allow_missing=True)),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class Appointment:
    """Backend-confirmed appointment; the client only mirrors it."""

    id: str
    patient_id: str
    doctor_id: str
    schedule_entry_id: str
    status: AppointmentStatus
    patient_name: str = ""
    doctor_name: str = ""
    room_name: str = ""
    appointment_date: Optional[date] = None
    appointment_time: str = ""

    @property
    def is_cancelable(self) -> bool:
        return self.status in CANCELABLE_STATUSES

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Appointment":
        if not isinstance(payload, Mapping) or not payload:
            raise DataIntegrityError("Appointment payload must be a non-empty object")
        appointment_date = _extract_first(payload, ("appointmentDate", "appointment_date"), allow_missing=True)
        return cls(
            id=str(_extract_first(payload, ("id", "appointmentId", "appointment_id"))),
            patient_id=str(_extract_first(payload, ("patientId", "patient_id"))),
            doctor_id=str(_extract_first(payload, ("doctorId", "doctor_id"))),
            schedule_entry_id=_optional_str(
                _extract_first(payload, ("doctorScheduleId", "scheduleEntryId", "schedule_entry_id"), allow_missing=True)
            ),
            status=AppointmentStatus.from_label(_extract_first(payload, ("status",))),
            patient_name=_optional_str(_extract_first(payload, ("patientName", "patient_name"), allow_missing=True)),
            doctor_name=_optional_str(_extract_first(payload, ("doctorName", "doctor_name"), allow_missing=True)),
            room_name=_optional_str(_extract_first(payload, ("roomName", "room_name"), allow_missing=True)),
            appointment_date=None if not appointment_date else _coerce_date(appointment_date),
            appointment_time=_optional_str(
                _extract_first(payload, ("appointmentTime", "appointment_time"), allow_missing=True)
            ).strip(),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "doctorId": self.doctor_id,
            "doctorName": self.doctor_name,
            "doctorScheduleId": self.schedule_entry_id,
            "roomName": self.room_name,
            "appointmentDate": self.appointment_date.isoformat() if self.appointment_date else None,
            "appointmentTime": self.appointment_time,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class BookingRequest:
    """Transient intent to reserve one slot; never persisted client-side."""

    patient_id: str
    doctor_id: str
    schedule_entry_id: str
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "patientId": self.patient_id,
            "doctorId": self.doctor_id,
            "doctorScheduleId": self.schedule_entry_id,
            "appointmentTime": self.requested_at.isoformat(),
        }


@dataclass(frozen=True)
class CancellationRequest:
    appointment_id: str
    reason: str
    actor_id: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "appointmentId": self.appointment_id,
            "status": AppointmentStatus.CANCELED.value,
            "reason": self.reason,
            "updatedByUserId": self.actor_id,
        }


@dataclass(frozen=True)
class PatientContext:
    """Session identity handed to each workflow by its caller."""

    user_id: str
    actor_id: Optional[str] = None

    @property
    def effective_actor_id(self) -> str:
        return self.actor_id or self.user_id


__all__ = [
    "Appointment",
    "AppointmentStatus",
    "BookingRequest",
    "CANCELABLE_STATUSES",
    "CancellationRequest",
    "Doctor",
    "Patient",
    "PatientContext",
    "ScheduleEntry",
    "ScheduleStatus",
    "Specialty",
]
