"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date, datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

WorkShift = Literal["morning", "afternoon"]
AppointmentStatus = Literal["pending", "confirmed", "canceled", "completed"]


def _coerce_work_date(value):
    """Accept a plain calendar date as midnight of that day"""
    if isinstance(value, str) and len(value) == 10:
        return datetime.fromisoformat(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AppointmentCreate(BaseModel):
    """Schema for creating or updating an appointment"""

    patient_id: int
    doctor_id: int
    work_date: datetime
    work_shift: WorkShift
    status: Optional[AppointmentStatus] = None

    @field_validator("work_date", mode="before")
    @classmethod
    def parse_work_date(cls, v):
        return _coerce_work_date(v)

    @field_validator("work_date")
    @classmethod
    def normalize_work_date(cls, v):
        return _to_naive_utc(v)


class PatientBookingCreate(BaseModel):
    """Schema for a patient booking for themselves; patient_id comes from the token"""

    doctor_id: int
    work_date: datetime
    work_shift: WorkShift
    patient_id: Optional[int] = None  # Ignored

    @field_validator("work_date", mode="before")
    @classmethod
    def parse_work_date(cls, v):
        return _coerce_work_date(v)

    @field_validator("work_date")
    @classmethod
    def normalize_work_date(cls, v):
        return _to_naive_utc(v)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    work_date: datetime
    work_shift: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserInfo(BaseModel):
    """Display fields of the user behind a patient or doctor"""

    id: int
    name: str
    email: str
    image: Optional[str] = None

    class Config:
        from_attributes = True


class PartySummary(BaseModel):
    """Patient or doctor reference populated with display fields"""

    id: int
    user_id: int
    name: str
    image: Optional[str] = None


class AppointmentWithParties(AppointmentResponse):
    patientInfo: UserInfo
    doctorInfo: UserInfo


class AppointmentPopulated(AppointmentResponse):
    patient: PartySummary
    doctor: PartySummary


class AppointmentWithPatientName(AppointmentResponse):
    patient_name: str


class AppointmentListResponse(BaseModel):
    success: bool
    appointments: list[AppointmentWithParties]


class DashboardCount(BaseModel):
    month: int
    status: str
    count: int


class DashboardCountResponse(BaseModel):
    success: bool
    appointments: list[DashboardCount]


class AdminUpcomingResponse(BaseModel):
    success: bool
    data: list[AppointmentPopulated]


class AdminCompletedResponse(BaseModel):
    success: bool
    data: list[AppointmentResponse]


class MessageResponse(BaseModel):
    message: str


class NotificationResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    content: str
    new_date: Optional[datetime] = None
    new_work_shift: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
