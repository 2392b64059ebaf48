"""Shared fixtures: in-memory database, API client and a small clinic."""

import os

# Must be set before the app package is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RESEND_API_KEY"] = ""
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app import models_appointment  # noqa: F401
from app.auth import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, create_access_token
from app.database import Base, SessionLocal, engine
from app.main import app
from app.models import Doctor, Patient, Role, User
from app.models_appointment import Appointment, AppointmentHistory, utcnow


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """API client; unexpected server errors come back as 500 responses."""
    return TestClient(app, raise_server_exceptions=False)


def _add_user(db, name, email, role, image=None):
    user = User(name=name, email=email, role=role, image=image)
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def clinic(db):
    """Roles, one admin, two doctors and two patients."""
    roles = {name: Role(name=name) for name in (ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT)}
    db.add_all(roles.values())
    db.flush()

    admin = _add_user(db, "Admin", "admin@clinic.local", roles[ROLE_ADMIN])

    doctor_user = _add_user(
        db, "Dr. Tran", "tran@clinic.local", roles[ROLE_DOCTOR], image="https://img/tran.png"
    )
    doctor = Doctor(user_id=doctor_user.id, description="General practice")
    other_doctor_user = _add_user(db, "Dr. Le", "le@clinic.local", roles[ROLE_DOCTOR])
    other_doctor = Doctor(user_id=other_doctor_user.id)

    patient_user = _add_user(db, "Nguyen An", "an@example.com", roles[ROLE_PATIENT])
    patient = Patient(user_id=patient_user.id)
    other_patient_user = _add_user(db, "Pham Binh", "binh@example.com", roles[ROLE_PATIENT])
    other_patient = Patient(user_id=other_patient_user.id)

    db.add_all([doctor, other_doctor, patient, other_patient])
    db.commit()

    return SimpleNamespace(
        admin=admin,
        doctor=doctor,
        doctor_user=doctor_user,
        other_doctor=other_doctor,
        patient=patient,
        patient_user=patient_user,
        other_patient=other_patient,
    )


@pytest.fixture
def auth_headers():
    """Bearer header for a user."""

    def _headers(user) -> dict:
        token = create_access_token(user.id, role=user.role.name if user.role else None)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_appointment(db):
    """Insert an appointment with its first history row."""

    def _make(patient_id, doctor_id, work_date=None, work_shift="morning", status="pending"):
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            work_date=work_date or utcnow() + timedelta(days=3),
            work_shift=work_shift,
            status=status,
        )
        db.add(appointment)
        db.flush()
        db.add(
            AppointmentHistory(
                appointment_id=appointment.id,
                sequence=1,
                status=appointment.status,
                work_date=appointment.work_date,
                work_shift=appointment.work_shift,
            )
        )
        db.commit()
        return appointment

    return _make
