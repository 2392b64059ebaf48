"""Tests for outbox dispatch of notifications and emails."""

import pytest

from app import email_service
from app.config import OUTBOX_MAX_ATTEMPTS
from app.database import SessionLocal
from app.models_appointment import Notification, OutboxEvent
from app.services.notification_service import dispatch_pending_events


@pytest.fixture
def sent_emails(monkeypatch):
    """Configure Resend with a fake key and capture outgoing messages."""
    sent = []

    def fake_send(params):
        sent.append(params)
        return {"id": f"email_{len(sent)}"}

    monkeypatch.setattr(email_service, "RESEND_API_KEY", "re_test_key")
    monkeypatch.setattr(email_service.resend.Emails, "send", fake_send)
    return sent


def _event(db, key, event_type, payload, attempts=0):
    event = OutboxEvent(
        idempotency_key=key,
        event_type=event_type,
        appointment_id=1,
        payload=payload,
        status="pending",
        attempts=attempts,
    )
    db.add(event)
    db.commit()
    return event.id


def _notification_payload(clinic):
    return {
        "patient_id": clinic.patient.id,
        "doctor_id": clinic.doctor.id,
        "content": "Your appointment has been changed.",
        "new_date": "2026-12-05T02:00:00",
        "new_work_shift": "afternoon",
    }


def _email_payload(role="doctor"):
    return {
        "template": "appointment_updated",
        "to": "tran@clinic.local",
        "recipient_role": role,
        "recipient_name": "Dr. Tran",
        "date_label": "Saturday, December 05 2026",
        "work_shift": "afternoon",
    }


class TestNotificationEvents:
    @pytest.mark.asyncio
    async def test_creates_notification(self, db, clinic):
        event_id = _event(db, "appointment:1:history:2:notification", "notification.create",
                          _notification_payload(clinic))

        counts = await dispatch_pending_events(SessionLocal)

        assert counts == {"delivered": 1, "retrying": 0, "failed": 0}
        db.expire_all()
        notification = db.query(Notification).one()
        assert notification.event_key == "appointment:1:history:2:notification"
        assert notification.new_work_shift == "afternoon"
        event = db.get(OutboxEvent, event_id)
        assert event.status == "delivered"
        assert event.processed_at is not None

    @pytest.mark.asyncio
    async def test_redelivery_does_not_duplicate(self, db, clinic):
        event_id = _event(db, "appointment:1:history:2:notification", "notification.create",
                          _notification_payload(clinic))
        await dispatch_pending_events(SessionLocal)

        db.expire_all()
        db.get(OutboxEvent, event_id).status = "pending"
        db.commit()
        counts = await dispatch_pending_events(SessionLocal)

        assert counts["delivered"] == 1
        db.expire_all()
        assert db.query(Notification).count() == 1


class TestEmailEvents:
    @pytest.mark.asyncio
    async def test_sends_doctor_email(self, db, clinic, sent_emails):
        _event(db, "appointment:1:history:2:email:doctor", "email.send", _email_payload())

        counts = await dispatch_pending_events(SessionLocal)

        assert counts["delivered"] == 1
        assert len(sent_emails) == 1
        message = sent_emails[0]
        assert message["to"] == ["tran@clinic.local"]
        assert message["subject"] == "Notification Appointment"
        assert message["text"] == (
            "Dear Doctor, your appointment with patient has been updated. "
            "\nNew date: Saturday, December 05 2026. \nTime: afternoon."
        )
        assert "html" in message

    @pytest.mark.asyncio
    async def test_patient_email_text(self, db, clinic, sent_emails):
        _event(db, "appointment:1:history:2:email:patient", "email.send",
               _email_payload(role="patient"))

        await dispatch_pending_events(SessionLocal)

        assert sent_emails[0]["text"].startswith("Dear Patient, your appointment has been updated.")

    @pytest.mark.asyncio
    async def test_missing_provider_key_schedules_retry(self, db, clinic):
        event_id = _event(db, "appointment:1:history:2:email:doctor", "email.send",
                          _email_payload())

        counts = await dispatch_pending_events(SessionLocal)

        assert counts == {"delivered": 0, "retrying": 1, "failed": 0}
        db.expire_all()
        event = db.get(OutboxEvent, event_id)
        assert event.status == "pending"
        assert event.attempts == 1
        assert "not configured" in event.last_error

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db, clinic):
        event_id = _event(db, "appointment:1:history:2:email:doctor", "email.send",
                          _email_payload(), attempts=OUTBOX_MAX_ATTEMPTS - 1)

        counts = await dispatch_pending_events(SessionLocal)

        assert counts["failed"] == 1
        db.expire_all()
        event = db.get(OutboxEvent, event_id)
        assert event.status == "failed"
        assert event.attempts == OUTBOX_MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_provider_error_is_recorded(self, db, clinic, monkeypatch):
        def broken_send(params):
            raise RuntimeError("provider unavailable")

        monkeypatch.setattr(email_service, "RESEND_API_KEY", "re_test_key")
        monkeypatch.setattr(email_service.resend.Emails, "send", broken_send)
        event_id = _event(db, "appointment:1:history:2:email:doctor", "email.send",
                          _email_payload())

        await dispatch_pending_events(SessionLocal)

        db.expire_all()
        assert "provider unavailable" in db.get(OutboxEvent, event_id).last_error


class TestDispatchBatch:
    @pytest.mark.asyncio
    async def test_failure_does_not_block_other_events(self, db, clinic):
        _event(db, "bad", "sms.send", {})
        good_id = _event(db, "appointment:1:history:1:notification", "notification.create",
                         _notification_payload(clinic))

        counts = await dispatch_pending_events(SessionLocal)

        assert counts == {"delivered": 1, "retrying": 1, "failed": 0}
        db.expire_all()
        assert db.get(OutboxEvent, good_id).status == "delivered"

    @pytest.mark.asyncio
    async def test_respects_limit(self, db, clinic):
        for sequence in range(3):
            _event(db, f"appointment:1:history:{sequence}:notification", "notification.create",
                   _notification_payload(clinic))

        counts = await dispatch_pending_events(SessionLocal, limit=2)

        assert counts["delivered"] == 2
        db.expire_all()
        assert db.query(OutboxEvent).filter_by(status="pending").count() == 1

    @pytest.mark.asyncio
    async def test_nothing_pending(self, clinic):
        counts = await dispatch_pending_events(SessionLocal)
        assert counts == {"delivered": 0, "retrying": 0, "failed": 0}
