"""Appointment domain errors - HTTPException subclasses raised by the service layer"""

from typing import Optional

from fastapi import HTTPException


class AppointmentError(HTTPException):
    """Base class; carries the HTTP status the route should answer with"""

    default_status = 400

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.default_status, detail=detail)


class AppointmentNotFoundError(AppointmentError):
    # The booking API has always answered 400 for an unknown appointment id
    default_status = 400


class AuthError(AppointmentError):
    default_status = 401


class CancellationWindowError(AppointmentError):
    default_status = 400


class InvalidStatusTransitionError(AppointmentError):
    default_status = 400


class PartyResolutionError(AppointmentError):
    """A stored appointment points at a patient/doctor/user that cannot be loaded"""

    default_status = 500
