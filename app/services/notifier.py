"""Composes appointment messages and hands them to the gateway."""

import structlog

from app.schemas.notifications import MessageKind
from app.services import email_templates
from app.services.appointment_service import AppointmentDetails
from app.services.delivery_service import DeliveryTracker
from app.services.notification_profiles import NotificationProfile
from app.services.notification_service import NotificationGateway

logger = structlog.get_logger(__name__)


class AppointmentNotifier:
    """Sends the WhatsApp message (and optional email) for one appointment event."""

    def __init__(self, gateway: NotificationGateway, tracker: DeliveryTracker):
        """Initialize notifier."""
        self.gateway = gateway
        self.tracker = tracker

    async def acknowledge(self, details: AppointmentDetails, profile: NotificationProfile) -> bool:
        """Notify the doctor of a new request and acknowledge it to the patient."""
        doctor_ok = await self.notify(MessageKind.DOCTOR_NOTIFY, details, profile)
        patient_ok = await self.notify(MessageKind.PATIENT_ACK, details, profile)
        return doctor_ok and patient_ok

    async def notify(
        self,
        kind: MessageKind,
        details: AppointmentDetails,
        profile: NotificationProfile,
    ) -> bool:
        """
        Send one message kind about an appointment.

        Returns:
            False if any send was attempted and failed
        """
        whatsapp_ok = await self._send_whatsapp(kind, details, profile)
        email_ok = await self._send_email(kind, details, profile)
        return whatsapp_ok and email_ok

    async def _send_whatsapp(
        self,
        kind: MessageKind,
        details: AppointmentDetails,
        profile: NotificationProfile,
    ) -> bool:
        template_id = details.doctor.get(kind.template_column)
        if not template_id:
            logger.info(
                "template_not_configured",
                doctor_id=details.doctor["id"],
                message_kind=kind.value,
            )
            return True

        if kind == MessageKind.DOCTOR_NOTIFY:
            recipient = details.doctor.get("whatsapp")
        else:
            recipient = details.patient.get("phone")
        if not recipient:
            logger.warning("no_recipient", appointment_id=details.id, message_kind=kind.value)
            return True

        result = await self.gateway.send(recipient, template_id, profile.variables(kind, details))
        if not result.success:
            logger.error(
                "appointment_message_failed",
                appointment_id=details.id,
                message_kind=kind.value,
                error=result.error,
            )
            return False

        if kind != MessageKind.DOCTOR_NOTIFY and result.message_id:
            await self.tracker.record_sent(result.message_id, details.id, kind.value, recipient)
        return True

    async def _send_email(
        self,
        kind: MessageKind,
        details: AppointmentDetails,
        profile: NotificationProfile,
    ) -> bool:
        if not profile.email_enabled:
            return True

        if kind == MessageKind.DOCTOR_NOTIFY:
            recipient = details.doctor.get("email")
        else:
            recipient = details.patient.get("email")
        if not recipient:
            return True

        rendered = email_templates.render(kind, profile.email_fields(details))
        if rendered is None:
            return True

        subject, html = rendered
        result = await self.gateway.send_email(recipient, subject, html)
        return result.success
