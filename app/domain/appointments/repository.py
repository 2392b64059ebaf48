"""Appointment repository - Database operations for appointments, history and outbox

Writes only add and flush; the service commits so that an appointment change,
its history row and its outbox events land in one transaction.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import extract, func
from sqlalchemy.orm import Query, Session, joinedload

from ...models import Doctor, Patient, Role, User
from ...models_appointment import Appointment, AppointmentHistory, Notification, OutboxEvent


def _with_parties(query: Query) -> Query:
    return query.options(
        joinedload(Appointment.patient).joinedload(Patient.user),
        joinedload(Appointment.doctor).joinedload(Doctor.user),
    )


class AppointmentRepository:
    """Repository for appointment database operations"""

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    @staticmethod
    def get_by_id(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def list_all(db: Session) -> list[Appointment]:
        """All appointments, newest-created first, with patient/doctor users loaded"""
        return (
            _with_parties(db.query(Appointment))
            .order_by(Appointment.created_at.desc(), Appointment.id.desc())
            .all()
        )

    @staticmethod
    def create(db: Session, **fields) -> Appointment:
        appointment = Appointment(**fields)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def apply_updates(db: Session, appointment: Appointment, **updates) -> Appointment:
        for key, value in updates.items():
            if value is not None and hasattr(appointment, key):
                setattr(appointment, key, value)
        db.flush()
        return appointment

    @staticmethod
    def delete(db: Session, appointment: Appointment) -> None:
        """Delete an appointment; history rows go with it through the relationship cascade"""
        db.delete(appointment)
        db.flush()

    @staticmethod
    def list_for_patient(db: Session, patient_id: int, since: datetime) -> list[Appointment]:
        return (
            _with_parties(db.query(Appointment))
            .filter(Appointment.patient_id == patient_id, Appointment.work_date >= since)
            .order_by(Appointment.updated_at.desc(), Appointment.id.desc())
            .all()
        )

    @staticmethod
    def list_for_doctor(
        db: Session, doctor_id: int, since: datetime, status: str
    ) -> list[Appointment]:
        return (
            _with_parties(db.query(Appointment))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.work_date >= since,
                Appointment.status == status,
            )
            .order_by(Appointment.updated_at.desc(), Appointment.id.desc())
            .all()
        )

    @staticmethod
    def list_upcoming(
        db: Session,
        since: datetime,
        doctor_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        """Appointments from `since` onwards, soonest first"""
        query = _with_parties(db.query(Appointment)).filter(Appointment.work_date >= since)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.work_date.asc(), Appointment.id.asc()).all()

    @staticmethod
    def list_by_statuses(
        db: Session, statuses: list[str], doctor_id: Optional[int] = None
    ) -> list[Appointment]:
        query = _with_parties(db.query(Appointment)).filter(Appointment.status.in_(statuses))
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        return query.order_by(Appointment.id.asc()).all()

    @staticmethod
    def count_by_month_and_status(db: Session, doctor_id: int) -> list[tuple[int, str, int]]:
        """(month, status, count) per pair for one doctor, unordered"""
        month = extract("month", Appointment.work_date)
        rows = (
            db.query(month.label("month"), Appointment.status, func.count(Appointment.id))
            .filter(Appointment.doctor_id == doctor_id)
            .group_by(month, Appointment.status)
            .all()
        )
        return [(int(m), status, int(count)) for m, status, count in rows]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @staticmethod
    def append_history(db: Session, appointment: Appointment) -> AppointmentHistory:
        """Append a snapshot of the appointment with the next sequence number"""
        last = (
            db.query(func.max(AppointmentHistory.sequence))
            .filter(AppointmentHistory.appointment_id == appointment.id)
            .scalar()
        )
        entry = AppointmentHistory(
            appointment_id=appointment.id,
            sequence=(last or 0) + 1,
            status=appointment.status,
            work_date=appointment.work_date,
            work_shift=appointment.work_shift,
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def list_history(db: Session, appointment_id: int) -> list[AppointmentHistory]:
        return (
            db.query(AppointmentHistory)
            .filter(AppointmentHistory.appointment_id == appointment_id)
            .order_by(AppointmentHistory.sequence)
            .all()
        )

    # ------------------------------------------------------------------
    # Outbox and notifications
    # ------------------------------------------------------------------

    @staticmethod
    def add_outbox_event(
        db: Session,
        idempotency_key: str,
        event_type: str,
        payload: dict,
        appointment_id: Optional[int] = None,
    ) -> OutboxEvent:
        event = OutboxEvent(
            idempotency_key=idempotency_key,
            event_type=event_type,
            appointment_id=appointment_id,
            payload=payload,
            status="pending",
            attempts=0,
        )
        db.add(event)
        db.flush()
        return event

    @staticmethod
    def list_notifications(
        db: Session, patient_id: Optional[int] = None, doctor_id: Optional[int] = None
    ) -> list[Notification]:
        query = db.query(Notification)
        if patient_id is not None:
            query = query.filter(Notification.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Notification.doctor_id == doctor_id)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    # ------------------------------------------------------------------
    # Reference entities
    # ------------------------------------------------------------------

    @staticmethod
    def get_patient(db: Session, patient_id: int) -> Optional[Patient]:
        return (
            db.query(Patient)
            .options(joinedload(Patient.user))
            .filter(Patient.id == patient_id)
            .first()
        )

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        return (
            db.query(Doctor)
            .options(joinedload(Doctor.user))
            .filter(Doctor.id == doctor_id)
            .first()
        )

    @staticmethod
    def find_doctor_by_user(db: Session, user_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def get_role_name(db: Session, user_id: int) -> Optional[str]:
        """Role name of a user via the users→roles join"""
        return (
            db.query(Role.name)
            .join(User, User.role_id == Role.id)
            .filter(User.id == user_id)
            .scalar()
        )
