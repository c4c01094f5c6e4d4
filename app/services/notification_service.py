"""Notification gateway for WhatsApp template messages via Twilio and email via Resend."""

import asyncio
import json

import resend
import structlog
from resend.exceptions import ResendError
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from app.config import Settings, settings
from app.core.exceptions import TransientException, ValidationException
from app.core.timeouts import bounded
from app.schemas.notifications import Channel, NotificationResult

logger = structlog.get_logger(__name__)


class NotificationGateway:
    """
    Outbound message transport.

    Transport problems never raise: a rejected or timed-out send comes back
    as an unsuccessful ``NotificationResult`` and the caller decides what
    that means for the flow it is part of. Malformed template variables are
    a caller bug and raise ``ValidationException`` before anything is sent.
    """

    def __init__(self, config: Settings | None = None, client: Client | None = None):
        """
        Initialize gateway.

        Args:
            config: Settings, defaults to the process settings
            client: Preconfigured Twilio client, mainly for tests
        """
        self.config = config or settings
        self.timeout = self.config.notification_timeout_seconds
        self.client = client or Client(
            self.config.twilio_account_sid,
            self.config.twilio_auth_token,
            http_client=TwilioHttpClient(timeout=self.timeout),
        )
        if self.config.email_enabled:
            resend.api_key = self.config.resend_api_key

    def normalize_phone(self, phone: str) -> str:
        """
        Convert a stored phone number to E.164.

        Bare 10-digit numbers get the default country code.
        """
        phone = phone.strip().replace(" ", "").replace("-", "")
        if phone.startswith("whatsapp:"):
            phone = phone.removeprefix("whatsapp:")
        if phone.startswith("+"):
            return phone
        if len(phone) == 10 and phone.isdigit():
            return f"{self.config.default_country_code}{phone}"
        return f"+{phone}"

    async def send(
        self,
        recipient: str,
        template_id: str,
        variables: dict[int, str],
    ) -> NotificationResult:
        """
        Send a WhatsApp template message.

        Args:
            recipient: Phone number of the recipient
            template_id: Twilio content SID
            variables: Positional template variables, keyed from 1

        Returns:
            Send outcome with the provider message SID on success

        Raises:
            ValidationException: Variables not numbered 1..n without gaps
        """
        if sorted(variables) != list(range(1, len(variables) + 1)):
            raise ValidationException("Template variables must be numbered from 1 without gaps")

        params = {
            "from_": f"whatsapp:{self.config.whatsapp_from}",
            "to": f"whatsapp:{self.normalize_phone(recipient)}",
            "content_sid": template_id,
            "content_variables": json.dumps(
                {str(index): str(value) for index, value in sorted(variables.items())}
            ),
        }
        if self.config.twilio_status_callback_url:
            params["status_callback"] = self.config.twilio_status_callback_url

        try:
            message = await bounded(
                asyncio.to_thread(self.client.messages.create, **params),
                self.timeout,
                "whatsapp send",
            )
        except (TwilioException, TransientException) as e:
            logger.error(
                "whatsapp_send_failed",
                template_id=template_id,
                recipient=params["to"],
                error=str(e),
            )
            return NotificationResult(success=False, error=str(e))

        logger.info(
            "whatsapp_message_sent",
            template_id=template_id,
            recipient=params["to"],
            message_sid=message.sid,
        )
        return NotificationResult(success=True, message_id=message.sid)

    async def send_email(self, to: str, subject: str, html: str) -> NotificationResult:
        """
        Send an email through Resend.

        Returns a skipped success when the email channel is not configured.
        """
        if not self.config.email_enabled:
            return NotificationResult(success=True, skipped=True)

        params = {
            "from": self.config.email_from,
            "to": [to],
            "subject": subject,
            "html": html,
        }

        try:
            response = await bounded(
                asyncio.to_thread(resend.Emails.send, params),
                self.timeout,
                "email send",
            )
        except (ResendError, TransientException) as e:
            logger.error("email_send_failed", recipient=to, subject=subject, error=str(e))
            return NotificationResult(success=False, error=str(e))

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info(
            "email_sent",
            channel=Channel.EMAIL.value,
            recipient=to,
            subject=subject,
            message_id=message_id,
        )
        return NotificationResult(success=True, message_id=message_id)
