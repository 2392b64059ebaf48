"""
Appointment Lifecycle Models
Appointments, their append-only history, patient/doctor notifications and the
outbox of pending side effects
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used for every stored datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """A patient's booking with a doctor for one shift of one day"""

    __tablename__ = "appointments"
    # Outbox keys embed the id, so ids of deleted appointments must never come back
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)

    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    # Scheduling
    work_date = Column(DateTime, nullable=False, index=True)
    work_shift = Column(String(20), nullable=False)  # morning, afternoon

    # Status workflow: pending → confirmed → completed
    # pending: Booked, waiting for the doctor
    # confirmed: Accepted by the doctor
    # completed: Visit took place (terminal)
    # canceled: Called off from pending or confirmed (terminal)
    status = Column(String(20), default="pending", nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    history = relationship(
        "AppointmentHistory",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentHistory.sequence",
    )


class AppointmentHistory(Base):
    """Append-only log of appointment states, one row per create/update"""

    __tablename__ = "appointment_history"
    __table_args__ = (UniqueConstraint("appointment_id", "sequence", name="uq_history_sequence"),)

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    # Snapshot of the appointment after the change
    status = Column(String(20), nullable=False)
    work_date = Column(DateTime, nullable=False)
    work_shift = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    appointment = relationship("Appointment", back_populates="history")


class Notification(Base):
    """Message surfaced to the patient and doctor dashboards"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    new_date = Column(DateTime, nullable=True)
    new_work_shift = Column(String(20), nullable=True)

    # Idempotency key of the outbox event that produced this row
    event_key = Column(String(255), unique=True, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)


class OutboxEvent(Base):
    """Side effect committed together with the appointment write it follows"""

    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(50), nullable=False)  # notification.create, email.send

    # Plain reference: events outlive deleted appointments
    appointment_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)

    # pending → delivered, or pending → failed after OUTBOX_MAX_ATTEMPTS
    status = Column(String(20), default="pending", nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
