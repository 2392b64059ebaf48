"""Appointment router - FastAPI endpoints for the appointment lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ...auth import AuthContext, get_auth_context, get_optional_auth_context, require_admin
from ...database import get_db
from ...models_appointment import Appointment
from ...services.notification_service import dispatch_pending_events
from .schemas import (
    AdminCompletedResponse,
    AdminUpcomingResponse,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentPopulated,
    AppointmentResponse,
    AppointmentWithParties,
    AppointmentWithPatientName,
    DashboardCountResponse,
    MessageResponse,
    NotificationResponse,
    PartySummary,
    PatientBookingCreate,
    UserInfo,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointment", tags=["Appointments"])
notification_router = APIRouter(prefix="/notification", tags=["Notifications"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def _base_fields(appointment: Appointment) -> dict:
    return AppointmentResponse.model_validate(appointment).model_dump()


def _party_summary(party) -> PartySummary:
    return PartySummary(
        id=party.id,
        user_id=party.user_id,
        name=party.user.name,
        image=party.user.image,
    )


def _populated(appointment: Appointment) -> AppointmentPopulated:
    return AppointmentPopulated(
        **_base_fields(appointment),
        patient=_party_summary(appointment.patient),
        doctor=_party_summary(appointment.doctor),
    )


def _with_parties(appointment: Appointment) -> AppointmentWithParties:
    return AppointmentWithParties(
        **_base_fields(appointment),
        patientInfo=UserInfo.model_validate(appointment.patient.user),
        doctorInfo=UserInfo.model_validate(appointment.doctor.user),
    )


# ============================================================================
# CREATE
# ============================================================================


@router.post("", response_model=AppointmentResponse)
async def create_appointment(
    data: AppointmentCreate,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Create an appointment for any patient"""
    return service.create_appointment(data)


@router.post("/book", response_model=AppointmentResponse)
async def book_appointment(
    data: PatientBookingCreate,
    background_tasks: BackgroundTasks,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book an appointment for the authenticated patient"""
    appointment = service.patient_create_appointment(data, auth)
    background_tasks.add_task(dispatch_pending_events)
    return appointment


# ============================================================================
# QUERIES
# ============================================================================


@router.get("", response_model=AppointmentListResponse)
async def find_all_appointments(
    service: AppointmentService = Depends(get_appointment_service),
):
    appointments = service.find_all_appointments()
    return AppointmentListResponse(
        success=True, appointments=[_with_parties(a) for a in appointments]
    )


@router.get("/mine", response_model=list[AppointmentPopulated])
async def get_my_appointments(
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Upcoming appointments of the caller (patient: any status, doctor: pending)"""
    return [_populated(a) for a in service.get_current_user_appointments(auth)]


@router.get("/admin/upcoming", response_model=AdminUpcomingResponse)
async def get_upcoming_admin(
    _admin: AuthContext = Depends(require_admin),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointments = service.get_upcoming_for_admin()
    return AdminUpcomingResponse(success=True, data=[_populated(a) for a in appointments])


@router.get("/admin/completed", response_model=AdminCompletedResponse)
async def get_completed_admin(
    _admin: AuthContext = Depends(require_admin),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointments = service.get_completed_for_admin()
    return AdminCompletedResponse(
        success=True,
        data=[AppointmentResponse.model_validate(a) for a in appointments],
    )


@router.get("/upcoming/{user_id}", response_model=list[AppointmentWithPatientName])
async def show_upcoming_appointments(
    user_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Future appointments: all of them for an admin, own confirmed ones for a doctor"""
    return [
        AppointmentWithPatientName(**_base_fields(a), patient_name=name)
        for a, name in service.show_upcoming_appointments(user_id)
    ]


@router.get("/status/{user_id}", response_model=list[AppointmentWithPatientName])
async def get_appointments_by_status(
    user_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    return [
        AppointmentWithPatientName(**_base_fields(a), patient_name=name)
        for a, name in service.get_appointments_by_status(user_id)
    ]


@router.get("/dashboard/{user_id}", response_model=DashboardCountResponse)
async def count_doctor_dashboard(
    user_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    return DashboardCountResponse(
        success=True, appointments=service.count_doctor_dashboard(user_id)
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_appointment(appointment_id)


# ============================================================================
# UPDATE / DELETE
# ============================================================================


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Update an appointment; patient and doctor are notified by the outbox dispatcher"""
    appointment = service.update_appointment(appointment_id, data, auth)
    background_tasks.add_task(dispatch_pending_events)
    return appointment


@router.delete("/{appointment_id}", response_model=MessageResponse)
async def delete_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.delete_appointment(appointment_id)


@router.delete("/{appointment_id}/early", response_model=MessageResponse)
async def cancel_appointment_early(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel ahead of time; refused inside the cancellation window"""
    return service.process_premature_cancellation(appointment_id)


# ============================================================================
# NOTIFICATIONS
# ============================================================================


@notification_router.get("/mine", response_model=list[NotificationResponse])
async def get_my_notifications(
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_current_user_notifications(auth)
