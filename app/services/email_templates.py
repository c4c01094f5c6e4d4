"""Email subjects and bodies for appointment messages."""

from app.schemas.notifications import MessageKind

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 560px; margin: 0 auto; color: #1f2933;">
  <h2 style="color: #0b6e4f;">{heading}</h2>
  {body}
  <p style="color: #7b8794; font-size: 12px;">This is an automated message, please do not reply.</p>
</div>
"""

TEMPLATES: dict[MessageKind, tuple[str, str, str]] = {
    MessageKind.DOCTOR_NOTIFY: (
        "New appointment request from {patient_name}",
        "New appointment request",
        "<p>{patient_name} (age {age}, phone {patient_phone}) requested an appointment"
        " for <b>{service}</b> on <b>{date}</b> at <b>{time}</b>.</p>"
        "<p>Location: {location}<br>Appointment ID: {appointment_id}</p>",
    ),
    MessageKind.PATIENT_ACK: (
        "We received your appointment request",
        "Request received",
        "<p>Dear {patient_name},</p><p>Your request to see {doctor_name} on <b>{date}</b>"
        " at <b>{time}</b> has been received. You will hear from us once it is confirmed.</p>",
    ),
    MessageKind.PATIENT_CONFIRM: (
        "Your appointment is confirmed",
        "Appointment confirmed",
        "<p>Dear {patient_name},</p><p>Your appointment with {doctor_name} on <b>{date}</b>"
        " at <b>{time}</b> is confirmed.</p><p>Location: {location}</p>",
    ),
    MessageKind.PATIENT_CANCEL: (
        "Your appointment has been cancelled",
        "Appointment cancelled",
        "<p>Dear {patient_name},</p><p>Your appointment with {doctor_name} on <b>{date}</b>"
        " at <b>{time}</b> has been cancelled.</p>",
    ),
    MessageKind.FEEDBACK: (
        "How was your visit?",
        "Tell us about your visit",
        "<p>Dear {patient_name},</p><p>Thank you for visiting {doctor_name}."
        ' We would appreciate your feedback: <a href="{feedback_link}">{feedback_link}</a></p>',
    ),
}


def render(kind: MessageKind, fields: dict[str, str]) -> tuple[str, str] | None:
    """
    Render the email for a message kind.

    Returns:
        Tuple of (subject, html), or None if the kind has no email
    """
    template = TEMPLATES.get(kind)
    if template is None:
        return None
    subject, heading, body = template
    html = _LAYOUT.format(heading=heading, body=body.format(**fields))
    return subject.format(**fields), html
