import json
import unittest
from datetime import datetime, timezone
from typing import Any, Optional
from unittest.mock import MagicMock

import requests

from connector import ClinicAPIClient
from scheduling.booking import BookingState, BookingWorkflow
from scheduling.errors import (
    AuthError,
    BackendRejected,
    ConflictError,
    DataIntegrityError,
    TransportError,
)
from scheduling.models import AppointmentStatus, BookingRequest, CancellationRequest, PatientContext


def make_response(status: int, payload: Any = None, *, text: Optional[str] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.encoding = "utf-8"
    if payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    elif text is not None:
        response._content = text.encode("utf-8")
        response.headers["Content-Type"] = "text/plain"
    else:
        response._content = b""
    return response


APPOINTMENT_PAYLOAD = {
    "id": 55,
    "patientId": 100,
    "doctorId": 7,
    "doctorScheduleId": 3,
    "appointmentDate": "2024-06-01",
    "status": "chờ xác nhận",
}


class ClinicAPIClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.client = ClinicAPIClient(
            base_url="http://clinic.test/api/",
            token="abc",
            timeout=10,
            session=self.session,
        )

    def test_get_schedules_sends_bearer_token_and_timeout(self) -> None:
        self.session.request.return_value = make_response(
            200,
            [
                {
                    "id": 3,
                    "date": "2024-06-01",
                    "shift": "morning",
                    "start_time": "08:00",
                    "end_time": "11:30",
                    "location": "Room 204",
                    "maxPatients": 2,
                    "bookedPatients": 1,
                }
            ],
        )

        entries = self.client.get_schedules_for_doctor("7")

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].doctor_id, "7")
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertEqual(kwargs["url"], "http://clinic.test/api/schedules/doctor/7")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer abc")
        self.assertEqual(kwargs["timeout"], 10)

    def test_data_envelope_is_unwrapped(self) -> None:
        self.session.request.return_value = make_response(
            200, {"data": {"id": 100, "userId": 10, "fullname": "Nguyen Van An"}}
        )

        patient = self.client.get_patient_by_user_id("10")

        self.assertEqual(patient.id, "100")
        self.assertEqual(
            self.session.request.call_args.kwargs["url"], "http://clinic.test/api/patients/user/10"
        )

    def test_create_appointment_posts_booking_payload(self) -> None:
        self.session.request.return_value = make_response(201, APPOINTMENT_PAYLOAD)
        request = BookingRequest(
            "100", "7", "3", requested_at=datetime(2024, 5, 30, 9, 0, tzinfo=timezone.utc)
        )

        appointment = self.client.create_appointment(request)

        self.assertEqual(appointment.id, "55")
        self.assertIs(appointment.status, AppointmentStatus.PENDING)
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["url"], "http://clinic.test/api/appointments")
        self.assertEqual(kwargs["json"], request.to_payload())

    def test_set_appointment_status_posts_reason(self) -> None:
        self.session.request.return_value = make_response(200, dict(APPOINTMENT_PAYLOAD, status="hủy"))

        appointment = self.client.set_appointment_status(CancellationRequest("55", "travel", "10"))

        self.assertIs(appointment.status, AppointmentStatus.CANCELED)
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["url"], "http://clinic.test/api/appointments/55/status")
        self.assertEqual(kwargs["json"]["reason"], "travel")
        self.assertEqual(kwargs["json"]["updatedByUserId"], "10")

    def test_status_codes_map_onto_errors(self) -> None:
        cases = [
            (409, ConflictError),
            (401, AuthError),
            (403, AuthError),
            (400, BackendRejected),
            (404, BackendRejected),
            (500, TransportError),
            (503, TransportError),
        ]
        for status, expected in cases:
            with self.subTest(status=status):
                self.session.request.return_value = make_response(status, {"message": "nope"})
                with self.assertRaises(expected) as raised:
                    self.client.get_doctor("7")
                self.assertEqual(raised.exception.status_code, status)
                self.assertIn("nope", str(raised.exception))

    def test_plain_text_error_body(self) -> None:
        self.session.request.return_value = make_response(409, text="Slot full")

        with self.assertRaises(ConflictError) as raised:
            self.client.create_appointment(BookingRequest("100", "7", "3"))

        self.assertEqual(str(raised.exception), "Slot full")

    def test_timeouts_and_connection_errors_are_transport_errors(self) -> None:
        for failure in (requests.Timeout("slow"), requests.ConnectionError("refused")):
            with self.subTest(failure=type(failure).__name__):
                self.session.request.side_effect = failure
                with self.assertRaises(TransportError):
                    self.client.list_doctors()

    def test_invalid_json_is_an_integrity_fault(self) -> None:
        self.session.request.return_value = make_response(200, text="<html>oops</html>")

        with self.assertRaises(DataIntegrityError):
            self.client.list_specialties()

    def test_unexpected_shape_is_an_integrity_fault(self) -> None:
        self.session.request.return_value = make_response(200, {"id": 1})

        with self.assertRaises(DataIntegrityError):
            self.client.get_appointments_for_patient("100")

    def test_empty_body_lists_as_empty(self) -> None:
        self.session.request.return_value = make_response(200)

        self.assertEqual(self.client.list_doctors(), [])

    def test_login_stores_token_without_sending_old_one(self) -> None:
        self.session.request.return_value = make_response(
            200, {"token": "fresh", "user": {"id": 10, "fullname": "An", "role": "patient"}}
        )

        auth = self.client.login("0900000000", "secret")

        self.assertEqual(auth.user_id, "10")
        self.assertEqual(self.client.token, "fresh")
        kwargs = self.session.request.call_args.kwargs
        self.assertNotIn("Authorization", kwargs["headers"])
        self.assertEqual(kwargs["json"], {"phoneNumber": "0900000000", "password": "secret"})

    def test_login_without_token_is_rejected(self) -> None:
        self.session.request.return_value = make_response(200, {"message": "ok"})

        with self.assertRaises(AuthError):
            self.client.login("0900000000", "secret")
        self.assertEqual(self.client.token, "abc")

    def test_doctors_by_specialty_path(self) -> None:
        self.session.request.return_value = make_response(200, {"data": [{"id": 7, "fullname": "Dr. Le Hoa"}]})

        doctors = self.client.list_doctors_by_specialty("3")

        self.assertEqual([doctor.id for doctor in doctors], ["7"])
        self.assertEqual(
            self.session.request.call_args.kwargs["url"], "http://clinic.test/api/doctors/specialty/3"
        )

    def test_missing_identifiers_are_rejected_locally(self) -> None:
        with self.assertRaises(ValueError):
            self.client.get_doctor("")
        self.session.request.assert_not_called()

    def test_malformed_schedule_entry_is_skipped(self) -> None:
        good = {
            "id": 1,
            "date": "2024-06-01",
            "start_time": "08:00",
            "end_time": "11:30",
            "maxPatients": 2,
            "bookedPatients": 0,
        }
        self.session.request.return_value = make_response(
            200, [good, dict(good, id=2, maxPatients="n/a"), dict(good, id=3, status="paused")]
        )

        with self.assertLogs("connector.clinic_client", level="ERROR") as logs:
            entries = self.client.get_schedules_for_doctor("7")

        self.assertEqual([entry.id for entry in entries], ["1"])
        self.assertEqual(len(logs.records), 2)

    def test_booking_starts_despite_a_malformed_schedule_entry(self) -> None:
        good = {
            "id": 1,
            "date": "2024-06-01",
            "start_time": "08:00",
            "end_time": "11:30",
            "maxPatients": 2,
            "bookedPatients": 0,
        }
        payloads = {
            "http://clinic.test/api/doctors/7": {"id": 7, "fullname": "Dr. Le Hoa"},
            "http://clinic.test/api/schedules/doctor/7": [good, dict(good, id=2, maxPatients="n/a")],
            "http://clinic.test/api/patients/user/10": {"id": 100, "userId": 10, "fullname": "An"},
        }
        self.session.request.side_effect = lambda **kwargs: make_response(200, payloads[kwargs["url"]])
        workflow = BookingWorkflow(self.client, PatientContext(user_id="10"))

        with self.assertLogs("connector.clinic_client", level="ERROR"):
            state = workflow.start("7")

        self.assertIs(state, BookingState.SELECTING_DATE)
        self.assertEqual([entry.id for entry in workflow.catalog], ["1"])


class ClinicAPIClientSessionTests(unittest.TestCase):
    def test_retries_only_cover_reads(self) -> None:
        client = ClinicAPIClient(base_url="http://clinic.test/api", max_retries=3)

        retry = client._session.get_adapter("http://clinic.test/api/doctors").max_retries

        self.assertEqual(retry.total, 3)
        self.assertIn("GET", retry.allowed_methods)
        self.assertNotIn("POST", retry.allowed_methods)

    def test_no_retries_by_default(self) -> None:
        client = ClinicAPIClient(base_url="http://clinic.test/api", max_retries=0)

        retry = client._session.get_adapter("http://clinic.test/api/doctors").max_retries

        self.assertEqual(retry.total, 0)

    def test_rejects_bad_configuration(self) -> None:
        with self.assertRaises(ValueError):
            ClinicAPIClient(base_url="")
        with self.assertRaises(ValueError):
            ClinicAPIClient(base_url="http://clinic.test/api", timeout=0)


if __name__ == "__main__":
    unittest.main()
