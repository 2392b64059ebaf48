"""
Outbox Notification Service
Delivers side effects queued by appointment writes: dashboard notifications
and emails to the patient and doctor. Runs as a FastAPI background task after
each mutating request and from the ARQ cron job for retries.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import OUTBOX_BATCH_SIZE, OUTBOX_MAX_ATTEMPTS
from ..database import SessionLocal
from ..email_service import send_appointment_updated_email
from ..models_appointment import Notification, OutboxEvent, utcnow

logger = logging.getLogger(__name__)

EVENT_NOTIFICATION = "notification.create"
EVENT_EMAIL = "email.send"

EMAIL_TEMPLATES = {
    "appointment_updated": send_appointment_updated_email,
}


class OutboxDeliveryError(Exception):
    """An outbox event could not be interpreted"""


def _claim_next_event(db: Session, skip_ids: set[int]) -> Optional[OutboxEvent]:
    """Lock the oldest pending event not yet tried in this run"""
    query = db.query(OutboxEvent).filter(OutboxEvent.status == "pending")
    if skip_ids:
        query = query.filter(~OutboxEvent.id.in_(skip_ids))
    return (
        query.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .with_for_update(skip_locked=True)
        .first()
    )


def _create_notification(db: Session, event: OutboxEvent) -> None:
    existing = (
        db.query(Notification.id)
        .filter(Notification.event_key == event.idempotency_key)
        .first()
    )
    if existing:
        logger.info(f"🔁 Notification for {event.idempotency_key} already exists, skipping")
        return

    payload = event.payload or {}
    new_date = payload.get("new_date")
    db.add(
        Notification(
            patient_id=payload["patient_id"],
            doctor_id=payload["doctor_id"],
            content=payload["content"],
            new_date=datetime.fromisoformat(new_date) if new_date else None,
            new_work_shift=payload.get("new_work_shift"),
            event_key=event.idempotency_key,
        )
    )
    db.flush()


async def _send_email(event: OutboxEvent) -> None:
    payload = dict(event.payload or {})
    template = payload.pop("template", None)
    sender = EMAIL_TEMPLATES.get(template)
    if sender is None:
        raise OutboxDeliveryError(f"Unknown email template: {template}")
    await sender(**payload)


async def _handle_event(db: Session, event: OutboxEvent) -> None:
    if event.event_type == EVENT_NOTIFICATION:
        _create_notification(db, event)
    elif event.event_type == EVENT_EMAIL:
        await _send_email(event)
    else:
        raise OutboxDeliveryError(f"Unknown event type: {event.event_type}")


def _record_failure(db: Session, event_id: int, error: Exception) -> str:
    event = db.get(OutboxEvent, event_id)
    event.attempts = (event.attempts or 0) + 1
    event.last_error = str(error)[:1000]
    if event.attempts >= OUTBOX_MAX_ATTEMPTS:
        event.status = "failed"
        event.processed_at = utcnow()
    db.commit()
    return event.status


async def dispatch_pending_events(
    session_factory: Callable[[], Session] = SessionLocal,
    limit: int = OUTBOX_BATCH_SIZE,
) -> dict:
    """
    Deliver up to `limit` pending outbox events, oldest first

    Each event is claimed, handled and committed on its own so one failure
    never blocks the rest of the batch. Delivery is at-least-once; notification
    rows are keyed by the event's idempotency key.

    Returns:
        Dict with delivered, retrying and failed counts
    """
    counts = {"delivered": 0, "retrying": 0, "failed": 0}
    tried: set[int] = set()
    db = session_factory()
    try:
        while len(tried) < limit:
            event = _claim_next_event(db, tried)
            if event is None:
                break
            tried.add(event.id)
            event_id, key = event.id, event.idempotency_key

            try:
                await _handle_event(db, event)
                event.status = "delivered"
                event.processed_at = utcnow()
                event.last_error = None
                db.commit()
                counts["delivered"] += 1
                logger.info(f"✅ Outbox event {key} delivered")
            except Exception as e:
                db.rollback()
                status = _record_failure(db, event_id, e)
                if status == "failed":
                    counts["failed"] += 1
                    logger.error(f"❌ Outbox event {key} failed permanently: {e}")
                else:
                    counts["retrying"] += 1
                    logger.warning(f"⚠️ Outbox event {key} will be retried: {e}")
    finally:
        db.close()

    if any(counts.values()):
        logger.info(
            f"📬 Outbox dispatch finished: {counts['delivered']} delivered, "
            f"{counts['retrying']} retrying, {counts['failed']} failed"
        )
    return counts
