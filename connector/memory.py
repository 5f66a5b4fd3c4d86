"""In-memory clinic backend.

It owns the capacity counters the way the real system of record does: slots
are taken and released only here, under a lock, so concurrent workflows see
the same race outcomes they would against the live service.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from scheduling.errors import AuthError, BackendRejected, ConflictError
from scheduling.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    ScheduleEntry,
    ScheduleStatus,
    Specialty,
)

from .clinic_client import AuthSession


@dataclass(frozen=True)
class CancellationRecord:
    appointment_id: str
    reason: str
    actor_id: str


@dataclass(frozen=True)
class _UserAccount:
    user_id: str
    phone_number: str
    password: str
    fullname: str
    role: str


class InMemoryClinicBackend:
    """Thread-safe in-memory stand-in for the clinic backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._doctors: Dict[str, Doctor] = {}
        self._specialties: Dict[str, Specialty] = {}
        self._doctor_specialties: Dict[str, str] = {}
        self._patients_by_user: Dict[str, Patient] = {}
        self._users: Dict[str, _UserAccount] = {}
        self._schedules: Dict[str, ScheduleEntry] = {}
        self._appointments: Dict[str, Appointment] = {}
        self._sequence: int = 1
        self.cancellations: List[CancellationRecord] = []

    def add_doctor(self, doctor: Doctor, *, specialty_id: Optional[str] = None) -> Doctor:
        with self._lock:
            self._doctors[doctor.id] = doctor
            if specialty_id is not None:
                self._doctor_specialties[doctor.id] = str(specialty_id)
        return doctor

    def add_specialty(self, specialty: Specialty) -> Specialty:
        with self._lock:
            self._specialties[specialty.id] = specialty
        return specialty

    def add_patient(self, patient: Patient) -> Patient:
        if not patient.user_id:
            raise ValueError("patient.user_id must be provided")
        with self._lock:
            self._patients_by_user[patient.user_id] = patient
        return patient

    def add_user(
        self,
        user_id: str,
        phone_number: str,
        password: str,
        *,
        fullname: str = "",
        role: str = "patient",
    ) -> None:
        with self._lock:
            self._users[phone_number] = _UserAccount(str(user_id), phone_number, password, fullname, role)

    def add_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        with self._lock:
            self._schedules[entry.id] = entry
        return entry

    def login(self, phone_number: str, password: str) -> AuthSession:
        account = self._users.get(phone_number)
        if account is None or account.password != password:
            raise AuthError("Invalid phone number or password", status_code=401)
        return AuthSession(
            token=f"token-{account.user_id}",
            user_id=account.user_id,
            fullname=account.fullname,
            role=account.role,
        )

    def list_doctors(self) -> List[Doctor]:
        return list(self._doctors.values())

    def list_specialties(self) -> List[Specialty]:
        return list(self._specialties.values())

    def list_doctors_by_specialty(self, specialty_id: str) -> List[Doctor]:
        return [
            doctor
            for doctor_id, doctor in self._doctors.items()
            if self._doctor_specialties.get(doctor_id) == str(specialty_id)
        ]

    def get_doctor(self, doctor_id: str) -> Doctor:
        doctor = self._doctors.get(str(doctor_id))
        if doctor is None:
            raise BackendRejected(f"Doctor {doctor_id} not found", status_code=404)
        return doctor

    def get_schedules_for_doctor(self, doctor_id: str) -> List[ScheduleEntry]:
        with self._lock:
            return [entry for entry in self._schedules.values() if entry.doctor_id == str(doctor_id)]

    def get_patient_by_user_id(self, user_id: str) -> Patient:
        patient = self._patients_by_user.get(str(user_id))
        if patient is None:
            raise BackendRejected(f"No patient linked to user {user_id}", status_code=404)
        return patient

    def _patient_by_id(self, patient_id: str) -> Patient:
        for patient in self._patients_by_user.values():
            if patient.id == patient_id:
                return patient
        raise BackendRejected(f"Patient {patient_id} not found", status_code=404)

    def create_appointment(self, request: BookingRequest) -> Appointment:
        patient = self._patient_by_id(str(request.patient_id))
        doctor = self.get_doctor(request.doctor_id)

        with self._lock:
            entry = self._schedules.get(str(request.schedule_entry_id))
            if entry is None or entry.doctor_id != doctor.id:
                raise BackendRejected(
                    f"Schedule {request.schedule_entry_id} is not published for doctor {doctor.id}",
                    status_code=404,
                )
            if entry.status is not ScheduleStatus.ACTIVE:
                raise ConflictError(f"Schedule {entry.id} is closed", status_code=409)
            if entry.booked_patients >= entry.max_patients:
                raise ConflictError(f"Schedule {entry.id} is fully booked", status_code=409)

            self._schedules[entry.id] = replace(entry, booked_patients=entry.booked_patients + 1)
            appointment_id = str(self._sequence)
            self._sequence += 1
            appointment = Appointment(
                id=appointment_id,
                patient_id=patient.id,
                patient_name=patient.fullname,
                doctor_id=doctor.id,
                doctor_name=doctor.fullname,
                schedule_entry_id=entry.id,
                room_name=entry.location,
                appointment_date=entry.date,
                appointment_time=f"{entry.start_time} - {entry.end_time}",
                status=AppointmentStatus.PENDING,
            )
            self._appointments[appointment_id] = appointment
        return appointment

    def set_appointment_status(self, request: CancellationRequest) -> Appointment:
        with self._lock:
            appointment = self._appointments.get(str(request.appointment_id))
            if appointment is None:
                raise BackendRejected(f"Appointment {request.appointment_id} not found", status_code=404)
            if appointment.status is not AppointmentStatus.PENDING:
                raise BackendRejected(
                    f"Appointment {appointment.id} is {appointment.status.value} and cannot be canceled",
                    status_code=400,
                )
            if not request.reason.strip():
                raise BackendRejected("A cancellation reason is required", status_code=400)

            updated = replace(appointment, status=AppointmentStatus.CANCELED)
            self._appointments[appointment.id] = updated
            entry = self._schedules.get(appointment.schedule_entry_id)
            if entry is not None and entry.booked_patients > 0:
                self._schedules[entry.id] = replace(entry, booked_patients=entry.booked_patients - 1)
            self.cancellations.append(
                CancellationRecord(appointment.id, request.reason, str(request.actor_id))
            )
        return updated

    def set_appointment_confirmed(self, appointment_id: str) -> Appointment:
        """Stand-in for the clinic staff confirming a pending appointment."""

        with self._lock:
            appointment = self._appointments[str(appointment_id)]
            updated = replace(appointment, status=AppointmentStatus.CONFIRMED)
            self._appointments[updated.id] = updated
        return updated

    def get_appointments_for_patient(self, patient_id: str) -> List[Appointment]:
        with self._lock:
            return [
                appointment
                for appointment in self._appointments.values()
                if appointment.patient_id == str(patient_id)
            ]


__all__ = ["CancellationRecord", "InMemoryClinicBackend"]
