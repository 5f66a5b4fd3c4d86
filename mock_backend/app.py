"""Mock clinic backend web application.

This module exposes a small Flask application that serves the clinic
backend's JSON contract on top of :class:`InMemoryClinicBackend`, so the HTTP
client and the command line can be exercised without the real service.
Capacity is enforced by the in-memory backend, exactly as the live system
of record would enforce it.
"""
from __future__ import annotations

from datetime import date, timedelta
import os
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request

from connector.memory import InMemoryClinicBackend
from scheduling.errors import (
    AuthError,
    BackendError,
    BackendRejected,
    ConflictError,
    DataIntegrityError,
    SchedulingError,
)
from scheduling.models import (
    AppointmentStatus,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    ScheduleEntry,
    ScheduleStatus,
    Specialty,
)

API_PREFIX = "/api"


def _error_status(exc: SchedulingError) -> int:
    if isinstance(exc, BackendError) and exc.status_code:
        return exc.status_code
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, (BackendRejected, DataIntegrityError)):
        return 400
    return 500


def _require_json() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BackendRejected("Request body must be a JSON object", status_code=400)
    return payload


def _require_field(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or str(value).strip() == "":
        raise BackendRejected(f"Field '{key}' is required", status_code=400)
    return str(value)


def create_app(backend: Optional[InMemoryClinicBackend] = None) -> Flask:
    app = Flask(__name__)
    store = backend or InMemoryClinicBackend()
    app.config["CLINIC_BACKEND"] = store

    @app.errorhandler(SchedulingError)
    def handle_scheduling_error(exc: SchedulingError) -> Tuple[Response, int]:
        return jsonify({"message": str(exc)}), _error_status(exc)

    @app.route(f"{API_PREFIX}/auth/login", methods=["POST"])
    def login() -> Response:
        payload = _require_json()
        session = store.login(_require_field(payload, "phoneNumber"), _require_field(payload, "password"))
        return jsonify(
            {
                "token": session.token,
                "user": {"id": session.user_id, "fullname": session.fullname, "role": session.role},
            }
        )

    @app.route(f"{API_PREFIX}/doctors", methods=["GET"])
    def doctors() -> Response:
        return jsonify([dict(doctor.raw) or _doctor_payload(doctor) for doctor in store.list_doctors()])

    @app.route(f"{API_PREFIX}/doctors/<doctor_id>", methods=["GET"])
    def doctor_detail(doctor_id: str) -> Response:
        doctor = store.get_doctor(doctor_id)
        return jsonify(dict(doctor.raw) or _doctor_payload(doctor))

    @app.route(f"{API_PREFIX}/doctors/specialty/<specialty_id>", methods=["GET"])
    def doctors_by_specialty(specialty_id: str) -> Response:
        return jsonify(
            [dict(doctor.raw) or _doctor_payload(doctor) for doctor in store.list_doctors_by_specialty(specialty_id)]
        )

    @app.route(f"{API_PREFIX}/specialties", methods=["GET"])
    def specialties() -> Response:
        return jsonify(
            [
                {"id": item.id, "name": item.name, "description": item.description, "icon": item.icon}
                for item in store.list_specialties()
            ]
        )

    @app.route(f"{API_PREFIX}/schedules/doctor/<doctor_id>", methods=["GET"])
    def schedules(doctor_id: str) -> Response:
        return jsonify([entry.to_payload() for entry in store.get_schedules_for_doctor(doctor_id)])

    @app.route(f"{API_PREFIX}/patients/user/<user_id>", methods=["GET"])
    def patient_by_user(user_id: str) -> Response:
        patient = store.get_patient_by_user_id(user_id)
        return jsonify(dict(patient.raw) or _patient_payload(patient))

    @app.route(f"{API_PREFIX}/appointments", methods=["POST"])
    def create_appointment() -> Tuple[Response, int]:
        payload = _require_json()
        booking = BookingRequest(
            patient_id=_require_field(payload, "patientId"),
            doctor_id=_require_field(payload, "doctorId"),
            schedule_entry_id=_require_field(payload, "doctorScheduleId"),
        )
        appointment = store.create_appointment(booking)
        return jsonify(appointment.to_payload()), 201

    @app.route(f"{API_PREFIX}/appointments/<appointment_id>/status", methods=["POST"])
    def appointment_status(appointment_id: str) -> Response:
        payload = _require_json()
        status = AppointmentStatus.from_label(_require_field(payload, "status"))
        if status is not AppointmentStatus.CANCELED:
            raise BackendRejected("Patients may only cancel appointments", status_code=400)
        appointment = store.set_appointment_status(
            CancellationRequest(
                appointment_id=appointment_id,
                reason=_require_field(payload, "reason"),
                actor_id=_require_field(payload, "updatedByUserId"),
            )
        )
        return jsonify(appointment.to_payload())

    @app.route(f"{API_PREFIX}/appointments/patient/<patient_id>", methods=["GET"])
    def patient_appointments(patient_id: str) -> Response:
        return jsonify([item.to_payload() for item in store.get_appointments_for_patient(patient_id)])

    return app


def _doctor_payload(doctor: Doctor) -> Dict[str, Any]:
    return {
        "doctorId": doctor.id,
        "fullname": doctor.fullname,
        "specialty": doctor.specialty,
        "department": doctor.department,
        "avatar_url": doctor.avatar_url,
        "experienceYears": doctor.experience_years,
    }


def _patient_payload(patient: Patient) -> Dict[str, Any]:
    return {
        "id": patient.id,
        "userId": patient.user_id,
        "fullname": patient.fullname,
        "gender": patient.gender,
        "dateOfBirth": patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        "phoneNumber": patient.phone_number,
    }


def seed_demo_data(backend: InMemoryClinicBackend, *, today: Optional[date] = None) -> InMemoryClinicBackend:
    """Populate ``backend`` with one doctor, one patient and a week of shifts."""

    today = today or date.today()
    backend.add_specialty(Specialty(id="1", name="Cardiology", description="Heart and vessels", icon="favorite"))
    backend.add_doctor(
        Doctor(id="1", fullname="Dr. Tran Minh", specialty="Cardiology", department="Internal Medicine"),
        specialty_id="1",
    )
    backend.add_user("10", "0900000000", "secret", fullname="Nguyen Van An")
    backend.add_patient(Patient(id="100", user_id="10", fullname="Nguyen Van An", phone_number="0900000000"))

    sequence = 1
    for offset in range(1, 8):
        shift_date = today + timedelta(days=offset)
        for shift, start, end in (("morning", "08:00", "11:30"), ("afternoon", "13:30", "17:00")):
            backend.add_schedule(
                ScheduleEntry(
                    id=str(sequence),
                    doctor_id="1",
                    date=shift_date,
                    shift=shift,
                    start_time=start,
                    end_time=end,
                    location="Room 204",
                    max_patients=5,
                    booked_patients=0,
                    status=ScheduleStatus.CLOSED if shift_date.weekday() == 6 else ScheduleStatus.ACTIVE,
                )
            )
            sequence += 1
    return backend


app = create_app(seed_demo_data(InMemoryClinicBackend()))


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
