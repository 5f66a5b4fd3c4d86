"""Protocol describing what the scheduling workflows need from a backend."""

from __future__ import annotations

from typing import List, Protocol

from .models import (
    Appointment,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    ScheduleEntry,
    Specialty,
)


class ClinicBackend(Protocol):
    """Minimal backend interface consumed by the booking and cancellation workflows.

    Implementations raise :class:`~scheduling.errors.BackendError` subclasses
    for every failure reported by, or on the way to, the system of record.
    """

    def get_doctor(self, doctor_id: str) -> Doctor:
        """Return the doctor identified by *doctor_id*."""

    def get_schedules_for_doctor(self, doctor_id: str) -> List[ScheduleEntry]:
        """Return every schedule entry published for *doctor_id*."""

    def get_patient_by_user_id(self, user_id: str) -> Patient:
        """Return the patient record linked to the authenticated user."""

    def create_appointment(self, request: BookingRequest) -> Appointment:
        """Reserve one slot; the backend decides whether capacity remains."""

    def set_appointment_status(self, request: CancellationRequest) -> Appointment:
        """Cancel an appointment and release its slot."""

    def get_appointments_for_patient(self, patient_id: str) -> List[Appointment]:
        """Return the patient's appointments as currently recorded."""


class ClinicDirectory(Protocol):
    """Read-only doctor browsing offered by the backend."""

    def list_doctors(self) -> List[Doctor]:
        """Return every doctor."""

    def list_specialties(self) -> List[Specialty]:
        """Return every specialty."""

    def list_doctors_by_specialty(self, specialty_id: str) -> List[Doctor]:
        """Return the doctors practising *specialty_id*."""


__all__ = ["ClinicBackend", "ClinicDirectory"]
