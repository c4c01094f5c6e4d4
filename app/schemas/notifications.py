"""Outbound notification schemas."""

from enum import Enum

from pydantic import BaseModel


class MessageKind(str, Enum):
    """Kinds of message a doctor has a template for."""

    DOCTOR_NOTIFY = "doctor_notify"
    PATIENT_ACK = "patient_ack"
    PATIENT_CONFIRM = "patient_confirm"
    PATIENT_CANCEL = "patient_cancel"
    REMINDER = "reminder"
    FEEDBACK = "feedback"
    RESCHEDULE = "reschedule"

    @property
    def template_column(self) -> str:
        """Doctor column holding the template id for this kind."""
        return f"template_{self.value}"


class Channel(str, Enum):
    """Delivery channel."""

    WHATSAPP = "whatsapp"
    EMAIL = "email"


class NotificationResult(BaseModel):
    """Outcome of a single send."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    skipped: bool = False
