import threading
import unittest
from datetime import date

from connector import InMemoryClinicBackend
from scheduling.errors import AuthError, BackendRejected, ConflictError
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


class InMemoryClinicBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = InMemoryClinicBackend()
        self.backend.add_specialty(Specialty(id="3", name="Dermatology"))
        self.backend.add_doctor(Doctor(id="7", fullname="Dr. Le Hoa"), specialty_id="3")
        self.backend.add_doctor(Doctor(id="8", fullname="Dr. Pham Quang"))
        for index in range(8):
            self.backend.add_patient(Patient(id=f"p-{index}", user_id=f"u-{index}", fullname=f"Patient {index}"))
        self.backend.add_schedule(
            ScheduleEntry(
                id="1",
                doctor_id="7",
                date=date(2024, 6, 1),
                shift="morning",
                start_time="08:00",
                end_time="11:30",
                location="Room 204",
                max_patients=3,
                booked_patients=0,
            )
        )

    def test_concurrent_bookings_never_exceed_capacity(self) -> None:
        results = []
        barrier = threading.Barrier(8)

        def book(index: int) -> None:
            barrier.wait(timeout=5)
            try:
                results.append(self.backend.create_appointment(BookingRequest(f"p-{index}", "7", "1")))
            except ConflictError as exc:
                results.append(exc)

        threads = [threading.Thread(target=book, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        booked = [item for item in results if not isinstance(item, ConflictError)]
        self.assertEqual(len(booked), 3)
        self.assertEqual(len(results), 8)
        self.assertEqual(self.backend.get_schedules_for_doctor("7")[0].booked_patients, 3)

    def test_closed_schedule_is_a_conflict(self) -> None:
        self.backend.add_schedule(
            ScheduleEntry(
                id="2",
                doctor_id="7",
                date=date(2024, 6, 2),
                shift="morning",
                start_time="08:00",
                end_time="11:30",
                location="Room 204",
                max_patients=3,
                booked_patients=0,
                status=ScheduleStatus.CLOSED,
            )
        )

        with self.assertRaises(ConflictError):
            self.backend.create_appointment(BookingRequest("p-0", "7", "2"))

    def test_schedule_of_another_doctor_is_rejected(self) -> None:
        with self.assertRaises(BackendRejected) as raised:
            self.backend.create_appointment(BookingRequest("p-0", "8", "1"))
        self.assertEqual(raised.exception.status_code, 404)

    def test_only_pending_appointments_can_be_canceled(self) -> None:
        appointment = self.backend.create_appointment(BookingRequest("p-0", "7", "1"))
        self.backend.set_appointment_confirmed(appointment.id)

        with self.assertRaises(BackendRejected):
            self.backend.set_appointment_status(CancellationRequest(appointment.id, "travel", "u-0"))

        stored = self.backend.get_appointments_for_patient("p-0")[0]
        self.assertIs(stored.status, AppointmentStatus.CONFIRMED)
        self.assertEqual(self.backend.get_schedules_for_doctor("7")[0].booked_patients, 1)

    def test_directory_queries(self) -> None:
        self.assertEqual([doctor.id for doctor in self.backend.list_doctors()], ["7", "8"])
        self.assertEqual([doctor.id for doctor in self.backend.list_doctors_by_specialty("3")], ["7"])
        self.assertEqual([item.name for item in self.backend.list_specialties()], ["Dermatology"])

    def test_login(self) -> None:
        self.backend.add_user("u-0", "0911111111", "pw", fullname="Patient 0")

        self.assertEqual(self.backend.login("0911111111", "pw").token, "token-u-0")
        with self.assertRaises(AuthError):
            self.backend.login("0911111111", "bad")


if __name__ == "__main__":
    unittest.main()
