"""Appointment service - Business logic for the appointment lifecycle"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, AuthContext
from ...models import Doctor, Patient
from ...models_appointment import Appointment, Notification, utcnow
from ...services.notification_service import EVENT_EMAIL, EVENT_NOTIFICATION
from .exceptions import (
    AppointmentError,
    AppointmentNotFoundError,
    AuthError,
    PartyResolutionError,
)
from .lifecycle import (
    ensure_cancellable,
    ensure_transition,
    format_long_date,
    format_short_date,
    start_of_today,
    status_rank,
)
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, PatientBookingCreate

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        """Create an appointment on behalf of any patient (staff/admin flow)"""
        if not self.repo.get_patient(self.db, data.patient_id):
            raise AppointmentNotFoundError("Patient not found")
        if not self.repo.get_doctor(self.db, data.doctor_id):
            raise AppointmentNotFoundError("Doctor not found")

        appointment = self.repo.create(
            self.db,
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            work_date=data.work_date,
            work_shift=data.work_shift,
            status=data.status or "pending",
        )
        self.repo.append_history(self.db, appointment)
        self._commit()
        self.db.refresh(appointment)

        logger.info(
            f"📅 Appointment {appointment.id} created: patient={appointment.patient_id} "
            f"doctor={appointment.doctor_id} {appointment.work_date:%Y-%m-%d} {appointment.work_shift}"
        )
        return appointment

    def patient_create_appointment(
        self, data: PatientBookingCreate, auth: Optional[AuthContext]
    ) -> Appointment:
        """Patient books for themselves; patient_id always comes from the caller"""
        if auth is None:
            raise AuthError("User not authenticated")
        if auth.patient_id is None:
            raise AppointmentNotFoundError("Patient not found")
        if not self.repo.get_doctor(self.db, data.doctor_id):
            raise AppointmentNotFoundError("Doctor not found")

        appointment = self.repo.create(
            self.db,
            patient_id=auth.patient_id,
            doctor_id=data.doctor_id,
            work_date=data.work_date,
            work_shift=data.work_shift,
            status="pending",
        )
        history = self.repo.append_history(self.db, appointment)

        self.repo.add_outbox_event(
            self.db,
            idempotency_key=f"appointment:{appointment.id}:history:{history.sequence}:notification",
            event_type=EVENT_NOTIFICATION,
            appointment_id=appointment.id,
            payload={
                "patient_id": appointment.patient_id,
                "doctor_id": appointment.doctor_id,
                "content": (
                    f"You booked an appointment on {format_short_date(appointment.work_date)}, "
                    "please wait for the doctor's confirmation."
                ),
                "new_date": appointment.work_date.isoformat(),
                "new_work_shift": appointment.work_shift,
            },
        )
        self._commit()
        self.db.refresh(appointment)

        logger.info(
            f"📅 Patient {auth.patient_id} booked appointment {appointment.id} "
            f"with doctor {appointment.doctor_id}"
        )
        return appointment

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find_all_appointments(self) -> list[Appointment]:
        appointments = self.repo.list_all(self.db)
        if not appointments:
            # Kept for existing clients: an empty store is reported as "not found"
            raise AppointmentNotFoundError("Appointment not found")
        for appointment in appointments:
            self._patient_user(appointment)
            self._doctor_user(appointment)
        return appointments

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFoundError("Appointment not found")
        return appointment

    def get_current_user_appointments(
        self, auth: AuthContext, now: Optional[datetime] = None
    ) -> list[Appointment]:
        """
        Upcoming appointments of the caller, from midnight of the clinic day.
        Patients see every status; doctors only see requests still pending.
        """
        today = start_of_today(now)

        if auth.role == ROLE_PATIENT:
            if auth.patient_id is None:
                raise AppointmentNotFoundError("Patient not found", status_code=404)
            return self.repo.list_for_patient(self.db, auth.patient_id, today)

        if auth.role == ROLE_DOCTOR:
            if auth.doctor_id is None:
                raise AppointmentNotFoundError("Doctor not found", status_code=404)
            return self.repo.list_for_doctor(self.db, auth.doctor_id, today, status="pending")

        raise AppointmentNotFoundError("Appointments not found", status_code=404)

    def show_upcoming_appointments(
        self, subject_user_id: int, now: Optional[datetime] = None
    ) -> list[tuple[Appointment, str]]:
        """Admin: everything ahead of now. Doctor: own confirmed appointments ahead of now."""
        now = now or utcnow()
        doctor = self._scope_for_subject(subject_user_id)

        if doctor is None:
            appointments = self.repo.list_upcoming(self.db, since=now)
        else:
            appointments = self.repo.list_upcoming(
                self.db, since=now, doctor_id=doctor.id, status="confirmed"
            )
        return [(a, self._patient_user(a).name) for a in appointments]

    def get_appointments_by_status(self, subject_user_id: int) -> list[tuple[Appointment, str]]:
        doctor = self._scope_for_subject(subject_user_id)
        appointments = self.repo.list_by_statuses(
            self.db,
            ["confirmed", "completed"],
            doctor_id=doctor.id if doctor else None,
        )
        return [(a, self._patient_user(a).name) for a in appointments]

    def count_doctor_dashboard(self, subject_user_id: int) -> list[dict]:
        """Appointment counts per (month of work_date, status) for a doctor's chart"""
        doctor = self.repo.find_doctor_by_user(self.db, subject_user_id)
        if not doctor:
            raise AppointmentError("Doctor not found", status_code=403)

        rows = self.repo.count_by_month_and_status(self.db, doctor.id)
        rows.sort(key=lambda row: (row[0], status_rank(row[1])))
        return [{"month": month, "status": status, "count": count} for month, status, count in rows]

    def get_upcoming_for_admin(self, now: Optional[datetime] = None) -> list[Appointment]:
        appointments = self.repo.list_upcoming(
            self.db, since=start_of_today(now), status="confirmed"
        )
        for appointment in appointments:
            self._patient_user(appointment)
            self._doctor_user(appointment)
        return appointments

    def get_completed_for_admin(self) -> list[Appointment]:
        return self.repo.list_by_statuses(self.db, ["completed"])

    def get_current_user_notifications(self, auth: AuthContext) -> list[Notification]:
        if auth.is_patient:
            return self.repo.list_notifications(self.db, patient_id=auth.patient_id)
        if auth.is_doctor:
            return self.repo.list_notifications(self.db, doctor_id=auth.doctor_id)
        raise AppointmentNotFoundError("Notifications not found", status_code=404)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_appointment(
        self, appointment_id: int, data: AppointmentCreate, auth: Optional[AuthContext]
    ) -> Appointment:
        """
        Apply an update and queue its side effects.

        The appointment change, a new history entry, one notification event and
        one email event per party are committed together. Contact details are
        resolved first so a missing patient/doctor leaves the appointment untouched.
        """
        if auth is None:
            raise AuthError("User not authenticated")

        appointment = self.get_appointment(appointment_id)
        new_status = data.status or appointment.status
        ensure_transition(appointment.status, new_status)

        patient = self.repo.get_patient(self.db, data.patient_id)
        if not patient:
            raise AppointmentError("Patient not found", status_code=404)
        doctor = self.repo.get_doctor(self.db, data.doctor_id)
        if not doctor:
            raise AppointmentError("Doctor not found", status_code=404)
        if not patient.user:
            raise AppointmentError("Information of patient not found", status_code=404)
        if not doctor.user:
            raise AppointmentError("Information of doctor not found", status_code=404)

        previous_status = appointment.status
        self.repo.apply_updates(
            self.db,
            appointment,
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            work_date=data.work_date,
            work_shift=data.work_shift,
            status=new_status,
        )
        history = self.repo.append_history(self.db, appointment)
        self._queue_update_side_effects(appointment, history.sequence, patient, doctor)
        self._commit()
        self.db.refresh(appointment)

        logger.info(
            f"✏️ Appointment {appointment.id} updated by user {auth.user_id}: "
            f"{previous_status} → {appointment.status}, "
            f"{appointment.work_date:%Y-%m-%d} {appointment.work_shift}"
        )
        return appointment

    def _queue_update_side_effects(
        self, appointment: Appointment, sequence: int, patient: Patient, doctor: Doctor
    ) -> None:
        key_prefix = f"appointment:{appointment.id}:history:{sequence}"
        date_label = format_long_date(appointment.work_date)

        self.repo.add_outbox_event(
            self.db,
            idempotency_key=f"{key_prefix}:notification",
            event_type=EVENT_NOTIFICATION,
            appointment_id=appointment.id,
            payload={
                "patient_id": appointment.patient_id,
                "doctor_id": appointment.doctor_id,
                "content": "Your appointment has been changed.",
                "new_date": appointment.work_date.isoformat(),
                "new_work_shift": appointment.work_shift,
            },
        )

        for recipient_role, user in (("patient", patient.user), ("doctor", doctor.user)):
            self.repo.add_outbox_event(
                self.db,
                idempotency_key=f"{key_prefix}:email:{recipient_role}",
                event_type=EVENT_EMAIL,
                appointment_id=appointment.id,
                payload={
                    "template": "appointment_updated",
                    "to": user.email,
                    "recipient_role": recipient_role,
                    "recipient_name": user.name,
                    "date_label": date_label,
                    "work_shift": appointment.work_shift,
                },
            )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_appointment(self, appointment_id: int) -> dict:
        appointment = self.get_appointment(appointment_id)
        self.repo.delete(self.db, appointment)
        self._commit()

        logger.info(f"🗑️ Appointment {appointment_id} deleted")
        return {"message": "Delete appointment success!"}

    def process_premature_cancellation(
        self, appointment_id: int, now: Optional[datetime] = None
    ) -> dict:
        """Delete an appointment only while it is more than the cancellation window away"""
        appointment = self.get_appointment(appointment_id)
        try:
            ensure_cancellable(appointment.work_date, now)
        except AppointmentError:
            logger.info(
                f"⛔ Early cancellation of appointment {appointment_id} rejected "
                f"(scheduled {appointment.work_date:%Y-%m-%d %H:%M} UTC)"
            )
            raise

        self.repo.delete(self.db, appointment)
        self._commit()

        logger.info(f"🗑️ Appointment {appointment_id} cancelled ahead of time")
        return {"message": "Delete appointment success!"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scope_for_subject(self, subject_user_id: int) -> Optional[Doctor]:
        """None for an admin (all doctors), otherwise the subject's Doctor record"""
        role = self.repo.get_role_name(self.db, subject_user_id)
        if not role:
            raise AppointmentError("User role not found", status_code=403)
        if role == ROLE_ADMIN:
            return None

        doctor = self.repo.find_doctor_by_user(self.db, subject_user_id)
        if not doctor:
            raise AppointmentError("Doctor not found", status_code=403)
        return doctor

    @staticmethod
    def _patient_user(appointment: Appointment):
        if not appointment.patient:
            raise PartyResolutionError("Patient not found")
        if not appointment.patient.user:
            raise PartyResolutionError("User not found")
        return appointment.patient.user

    @staticmethod
    def _doctor_user(appointment: Appointment):
        if not appointment.doctor:
            raise PartyResolutionError("Doctor not found")
        if not appointment.doctor.user:
            raise PartyResolutionError("User not found")
        return appointment.doctor.user
