"""
Email Service using Resend
Transactional appointment emails, plain text with an MJML-rendered HTML part
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import appointment_updated_template, appointment_updated_text

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY

APPOINTMENT_SUBJECT = "Notification Appointment"


class EmailDeliveryError(Exception):
    """Raised when an email cannot be handed to the provider"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # Newer releases return an object/dict carrying 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        html = getattr(result, "html", None)
        if html is not None:
            return html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    text: str,
    mjml_content: Optional[str] = None,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        text: Plain-text body
        mjml_content: Optional MJML template for the HTML part
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    recipients = [to] if isinstance(to, str) else to
    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": recipients,
        "subject": subject,
        "text": text,
    }
    if mjml_content:
        email_data["html"] = compile_mjml_to_html(mjml_content)

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(email_data)
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


async def send_appointment_updated_email(
    to: str,
    recipient_role: str,
    recipient_name: str,
    date_label: str,
    work_shift: str,
) -> dict:
    """Tell a patient or doctor the new date and shift of their appointment"""
    return await send_email(
        to=to,
        subject=APPOINTMENT_SUBJECT,
        text=appointment_updated_text(recipient_role, date_label, work_shift),
        mjml_content=appointment_updated_template(
            recipient_role=recipient_role,
            recipient_name=recipient_name,
            date_label=date_label,
            work_shift=work_shift,
        ),
    )
