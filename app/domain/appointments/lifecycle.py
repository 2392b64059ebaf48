"""
Appointment lifecycle rules
Status state machine, cancellation window and clinic-timezone date helpers
"""

from datetime import datetime, timedelta
from typing import Optional

import pytz

from ...config import CANCELLATION_WINDOW_HOURS, CLINIC_TIMEZONE
from ...models_appointment import utcnow
from .exceptions import CancellationWindowError, InvalidStatusTransitionError

# Lifecycle order, also used to order dashboard counts within a month
STATUSES = ("pending", "confirmed", "completed", "canceled")

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "canceled"},
    "confirmed": {"completed", "canceled"},
    "completed": set(),
    "canceled": set(),
}


def can_transition(current: str, new: str) -> bool:
    """Re-applying the current status is not a transition and is always allowed"""
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(current: str, new: str) -> None:
    if not can_transition(current, new):
        raise InvalidStatusTransitionError(
            f"Cannot change appointment status from '{current}' to '{new}'"
        )


def status_rank(status: str) -> int:
    try:
        return STATUSES.index(status)
    except ValueError:
        return len(STATUSES)


def is_within_cancellation_window(
    work_date: datetime,
    now: Optional[datetime] = None,
    window_hours: int = CANCELLATION_WINDOW_HOURS,
) -> bool:
    """True when the appointment is `window_hours` or less away (or already past)"""
    now = now or utcnow()
    return work_date - now <= timedelta(hours=window_hours)


def ensure_cancellable(
    work_date: datetime,
    now: Optional[datetime] = None,
    window_hours: int = CANCELLATION_WINDOW_HOURS,
) -> None:
    if is_within_cancellation_window(work_date, now, window_hours):
        days = window_hours / 24
        label = f"{days:g} day" if days == 1 else f"{window_hours} hours"
        raise CancellationWindowError(
            f"You can only cancel appointments more than {label} in advance."
        )


def _clinic_tz(tz_name: Optional[str] = None):
    return pytz.timezone(tz_name or CLINIC_TIMEZONE)


def to_clinic_time(value: datetime, tz_name: Optional[str] = None) -> datetime:
    """Naive UTC → aware datetime in the clinic timezone"""
    return pytz.utc.localize(value).astimezone(_clinic_tz(tz_name))


def start_of_today(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> datetime:
    """Midnight of the current clinic day, expressed as naive UTC"""
    tz = _clinic_tz(tz_name)
    local_now = to_clinic_time(now or utcnow(), tz_name)
    midnight = tz.localize(datetime(local_now.year, local_now.month, local_now.day))
    return midnight.astimezone(pytz.utc).replace(tzinfo=None)


def format_long_date(value: datetime, tz_name: Optional[str] = None) -> str:
    """e.g. 'Tuesday, October 20 2026'"""
    return to_clinic_time(value, tz_name).strftime("%A, %B %d %Y")


def format_short_date(value: datetime, tz_name: Optional[str] = None) -> str:
    """e.g. '20/10/2026'"""
    return to_clinic_time(value, tz_name).strftime("%d/%m/%Y")
