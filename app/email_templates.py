"""
MJML Email Templates
Appointment emails using MJML for responsive, cross-client compatibility
"""

THEME = {
    "primary": "#4f46e5",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}

SHIFT_LABELS = {
    "morning": "Morning",
    "afternoon": "Afternoon",
}


def get_base_template(title: str, preview_text: str, content_sections: str) -> str:
    """Base MJML template wrapper for all emails"""
    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['card_bg']}" padding="32px 20px">
          <mj-column>
            <mj-text font-size="22px" font-weight="700" color="{THEME['text_primary']}">
              {title}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" />
            {content_sections}
          </mj-column>
        </mj-section>
        <mj-section padding="16px 20px">
          <mj-column>
            <mj-text align="center" font-size="12px" color="{THEME['text_muted']}">
              You're receiving this because you have an appointment at our clinic.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def appointment_updated_text(recipient_role: str, date_label: str, work_shift: str) -> str:
    """Plain-text body of the appointment update email"""
    if recipient_role == "doctor":
        opening = "Dear Doctor, your appointment with patient has been updated."
    else:
        opening = "Dear Patient, your appointment has been updated."
    return f"{opening} \nNew date: {date_label}. \nTime: {work_shift}."


def appointment_updated_template(
    recipient_role: str, recipient_name: str, date_label: str, work_shift: str
) -> str:
    greeting = "Dear Doctor" if recipient_role == "doctor" else "Dear Patient"
    summary = (
        "An appointment with your patient has been updated."
        if recipient_role == "doctor"
        else "Your appointment has been updated."
    )
    shift = SHIFT_LABELS.get(work_shift, work_shift)

    content = f"""
            <mj-text>{greeting} {recipient_name},</mj-text>
            <mj-text>{summary}</mj-text>
            <mj-table>
              <tr>
                <td style="padding: 6px 0; color: {THEME['text_muted']};">New date</td>
                <td style="padding: 6px 0; font-weight: 600;">{date_label}</td>
              </tr>
              <tr>
                <td style="padding: 6px 0; color: {THEME['text_muted']};">Time</td>
                <td style="padding: 6px 0; font-weight: 600;">{shift}</td>
              </tr>
            </mj-table>
    """
    return get_base_template(
        title="Appointment Updated",
        preview_text=f"New date: {date_label} ({shift})",
        content_sections=content,
    )
