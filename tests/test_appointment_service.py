"""Service-level tests with an explicit clock."""

from datetime import datetime, timedelta

import pytest

from app.auth import AuthContext, resolve_auth_context
from app.domain.appointments.exceptions import AppointmentError, CancellationWindowError
from app.domain.appointments.schemas import AppointmentCreate
from app.domain.appointments.service import AppointmentService
from app.models_appointment import Appointment, AppointmentHistory, OutboxEvent

WORK_DATE = datetime(2026, 11, 20, 2, 0, 0)


@pytest.fixture
def service(db):
    return AppointmentService(db)


class TestCancellationBoundary:
    def test_exactly_twenty_four_hours_is_rejected(self, service, db, clinic, make_appointment):
        appointment = make_appointment(clinic.patient.id, clinic.doctor.id, work_date=WORK_DATE)

        with pytest.raises(CancellationWindowError):
            service.process_premature_cancellation(
                appointment.id, now=WORK_DATE - timedelta(hours=24)
            )
        assert db.query(Appointment).count() == 1

    def test_one_second_outside_window_succeeds(self, service, db, clinic, make_appointment):
        appointment = make_appointment(clinic.patient.id, clinic.doctor.id, work_date=WORK_DATE)
        appointment_id = appointment.id

        result = service.process_premature_cancellation(
            appointment_id, now=WORK_DATE - timedelta(hours=24, seconds=1)
        )

        assert result == {"message": "Delete appointment success!"}
        assert db.query(Appointment).count() == 0
        assert db.query(AppointmentHistory).filter_by(appointment_id=appointment_id).count() == 0


class TestHistory:
    def test_each_update_appends_a_sequence(self, service, db, clinic):
        data = AppointmentCreate(
            patient_id=clinic.patient.id,
            doctor_id=clinic.doctor.id,
            work_date=WORK_DATE,
            work_shift="morning",
        )
        appointment = service.create_appointment(data)
        auth = AuthContext(user_id=clinic.admin.id, role="admin")

        service.update_appointment(
            appointment.id, data.model_copy(update={"status": "confirmed"}), auth
        )
        service.update_appointment(
            appointment.id, data.model_copy(update={"status": "completed"}), auth
        )

        history = service.repo.list_history(db, appointment.id)
        assert [(h.sequence, h.status) for h in history] == [
            (1, "pending"),
            (2, "confirmed"),
            (3, "completed"),
        ]
        # One notification and two emails per update
        assert db.query(OutboxEvent).count() == 6

    def test_update_without_status_keeps_current(self, service, clinic, make_appointment):
        appointment = make_appointment(
            clinic.patient.id, clinic.doctor.id, work_date=WORK_DATE, status="confirmed"
        )
        data = AppointmentCreate(
            patient_id=clinic.patient.id,
            doctor_id=clinic.doctor.id,
            work_date=WORK_DATE + timedelta(days=1),
            work_shift="afternoon",
        )
        updated = service.update_appointment(
            appointment.id, data, AuthContext(user_id=clinic.admin.id, role="admin")
        )
        assert updated.status == "confirmed"
        assert updated.work_shift == "afternoon"

    def test_update_requires_auth(self, service, clinic, make_appointment):
        appointment = make_appointment(clinic.patient.id, clinic.doctor.id, work_date=WORK_DATE)
        data = AppointmentCreate(
            patient_id=clinic.patient.id,
            doctor_id=clinic.doctor.id,
            work_date=WORK_DATE,
            work_shift="morning",
        )
        with pytest.raises(AppointmentError) as exc_info:
            service.update_appointment(appointment.id, data, None)
        assert exc_info.value.status_code == 401


class TestCurrentUserWindow:
    def test_today_starts_at_clinic_midnight(self, service, db, clinic, make_appointment):
        # 01:00 UTC on the 20th is 08:00 in the clinic; the clinic day began at 17:00 UTC on the 19th
        now = datetime(2026, 11, 20, 1, 0, 0)
        earlier_today = make_appointment(
            clinic.patient.id, clinic.doctor.id, work_date=datetime(2026, 11, 19, 18, 0)
        )
        make_appointment(
            clinic.patient.id, clinic.doctor.id, work_date=datetime(2026, 11, 19, 16, 0)
        )

        auth = resolve_auth_context(db, clinic.patient_user.id)
        appointments = service.get_current_user_appointments(auth, now=now)

        assert [a.id for a in appointments] == [earlier_today.id]

    def test_auth_context_for_doctor(self, db, clinic):
        auth = resolve_auth_context(db, clinic.doctor_user.id)
        assert auth.is_doctor
        assert auth.doctor_id == clinic.doctor.id
        assert auth.patient_id is None

    def test_unknown_user_has_no_context(self, db, clinic):
        assert resolve_auth_context(db, 9999) is None


class TestAdminUpcoming:
    def test_uses_clinic_midnight(self, service, clinic, make_appointment):
        now = datetime(2026, 11, 20, 1, 0, 0)
        this_morning = make_appointment(
            clinic.patient.id,
            clinic.doctor.id,
            work_date=datetime(2026, 11, 19, 23, 0),
            status="confirmed",
        )
        upcoming = service.get_upcoming_for_admin(now=now)
        assert [a.id for a in upcoming] == [this_morning.id]

    def test_show_upcoming_uses_current_time(self, service, clinic, make_appointment):
        now = datetime(2026, 11, 20, 1, 0, 0)
        make_appointment(
            clinic.patient.id,
            clinic.doctor.id,
            work_date=datetime(2026, 11, 19, 23, 0),
            status="confirmed",
        )
        later = make_appointment(
            clinic.patient.id,
            clinic.doctor.id,
            work_date=datetime(2026, 11, 21, 2, 0),
            status="confirmed",
        )
        rows = service.show_upcoming_appointments(clinic.doctor_user.id, now=now)
        assert [(a.id, name) for a, name in rows] == [(later.id, "Nguyen An")]
