import unittest
from datetime import date, datetime, timezone

from scheduling.errors import DataIntegrityError
from scheduling.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    PatientContext,
    ScheduleEntry,
    ScheduleStatus,
)


class AppointmentStatusTests(unittest.TestCase):
    def test_backend_labels_map_onto_closed_set(self) -> None:
        cases = {
            "Chờ xác nhận": AppointmentStatus.PENDING,
            "chưa xác nhận": AppointmentStatus.PENDING,
            "pending-confirmation": AppointmentStatus.PENDING,
            " xác nhận ": AppointmentStatus.CONFIRMED,
            "Hủy": AppointmentStatus.CANCELED,
            "cancelled": AppointmentStatus.CANCELED,
            "từ chối": AppointmentStatus.REJECTED,
        }
        for label, expected in cases.items():
            with self.subTest(label=label):
                self.assertIs(AppointmentStatus.from_label(label), expected)

    def test_unknown_label_is_an_integrity_fault(self) -> None:
        with self.assertRaises(DataIntegrityError):
            AppointmentStatus.from_label("on hold")

    def test_schedule_status_defaults_to_active(self) -> None:
        self.assertIs(ScheduleStatus.from_label(None), ScheduleStatus.ACTIVE)
        self.assertIs(ScheduleStatus.from_label("Closed"), ScheduleStatus.CLOSED)
        with self.assertRaises(DataIntegrityError):
            ScheduleStatus.from_label("paused")


class ScheduleEntryParsingTests(unittest.TestCase):
    def test_parses_camel_and_snake_case_payload(self) -> None:
        entry = ScheduleEntry.from_payload(
            {
                "id": 3,
                "doctorId": 7,
                "date": "2024-06-01",
                "shift": "afternoon",
                "startTime": "13:30",
                "end_time": "17:00",
                "location": "Room 2",
                "max_patients": "4",
                "bookedPatients": 1,
                "status": "active",
            }
        )

        self.assertEqual(entry.id, "3")
        self.assertEqual(entry.doctor_id, "7")
        self.assertEqual(entry.max_patients, 4)
        self.assertEqual(entry.booked_patients, 1)

    def test_overbooked_payload_is_kept_for_the_allocator(self) -> None:
        entry = ScheduleEntry.from_payload(
            {
                "id": 1,
                "doctorId": 7,
                "date": "2024-06-01",
                "start_time": "08:00",
                "end_time": "09:00",
                "maxPatients": 1,
                "bookedPatients": 2,
            }
        )

        self.assertEqual(entry.booked_patients, 2)

    def test_malformed_payloads(self) -> None:
        base = {
            "id": 1,
            "doctorId": 7,
            "date": "2024-06-01",
            "start_time": "08:00",
            "end_time": "09:00",
            "maxPatients": 1,
        }
        broken = [
            {key: value for key, value in base.items() if key != "id"},
            dict(base, date="01/06/2024"),
            dict(base, maxPatients="many"),
            dict(base, start_time="morning"),
            {},
        ]
        for payload in broken:
            with self.subTest(payload=payload):
                with self.assertRaises(DataIntegrityError):
                    ScheduleEntry.from_payload(payload)

    def test_time_slots_in_half_hour_steps(self) -> None:
        entry = ScheduleEntry.from_payload(
            {
                "id": 1,
                "doctorId": 7,
                "date": "2024-06-01",
                "start_time": "08:00",
                "end_time": "09:30",
                "maxPatients": 1,
            }
        )

        self.assertEqual(entry.time_slots(), ["08:00", "08:30", "09:00", "09:30"])
        self.assertEqual(entry.time_slots(45), ["08:00", "08:45", "09:30"])
        with self.assertRaises(ValueError):
            entry.time_slots(0)


class BoundaryModelTests(unittest.TestCase):
    def test_appointment_from_backend_payload(self) -> None:
        appointment = Appointment.from_payload(
            {
                "id": 55,
                "patientId": 100,
                "patientName": "Nguyen Van An",
                "doctorId": 7,
                "doctorName": "Dr. Le Hoa",
                "doctorScheduleId": 3,
                "roomName": "Room 2",
                "appointmentDate": "2024-06-01",
                "appointmentTime": " ",
                "status": "chờ xác nhận",
            }
        )

        self.assertEqual(appointment.id, "55")
        self.assertEqual(appointment.schedule_entry_id, "3")
        self.assertEqual(appointment.appointment_date, date(2024, 6, 1))
        self.assertEqual(appointment.appointment_time, "")
        self.assertTrue(appointment.is_cancelable)

    def test_doctor_and_patient_payloads(self) -> None:
        doctor = Doctor.from_payload({"doctorId": 7, "fullname": "Dr. Le Hoa", "experienceYears": 12})
        patient = Patient.from_payload({"id": 100, "userId": 10, "fullname": "An", "dateOfBirth": "1990-02-03"})

        self.assertEqual(doctor.id, "7")
        self.assertEqual(doctor.experience_years, 12)
        self.assertEqual(patient.user_id, "10")
        self.assertEqual(patient.date_of_birth, date(1990, 2, 3))

    def test_request_wire_formats(self) -> None:
        booked_at = datetime(2024, 5, 30, 9, 15, tzinfo=timezone.utc)
        booking = BookingRequest("100", "7", "3", requested_at=booked_at)
        cancellation = CancellationRequest("55", "schedule conflict", "10")

        self.assertEqual(
            booking.to_payload(),
            {
                "patientId": "100",
                "doctorId": "7",
                "doctorScheduleId": "3",
                "appointmentTime": "2024-05-30T09:15:00+00:00",
            },
        )
        self.assertEqual(
            cancellation.to_payload(),
            {
                "appointmentId": "55",
                "status": "canceled",
                "reason": "schedule conflict",
                "updatedByUserId": "10",
            },
        )

    def test_patient_context_actor_defaults_to_user(self) -> None:
        self.assertEqual(PatientContext(user_id="10").effective_actor_id, "10")
        self.assertEqual(PatientContext(user_id="10", actor_id="99").effective_actor_id, "99")


if __name__ == "__main__":
    unittest.main()
