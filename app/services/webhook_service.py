"""Routes doctor button replies to lifecycle actions."""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from app.core.exceptions import AppException
from app.schemas.webhooks import ReplyEvent
from app.services.lifecycle_service import AppointmentLifecycle

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """Turns inbound reply webhooks into confirm/cancel calls."""

    def __init__(self, lifecycle: AppointmentLifecycle):
        """Initialize dispatcher."""
        self.lifecycle = lifecycle

    async def dispatch(self, data: Mapping[str, Any]) -> bool:
        """
        Handle one reply payload.

        Malformed payloads, unknown appointments and rejected actions all
        come back as False; the provider is always answered with success.

        Args:
            data: Form fields posted by the provider

        Returns:
            True if the requested action succeeded
        """
        try:
            event = ReplyEvent.model_validate(dict(data))
        except ValidationError as e:
            logger.info("webhook_payload_rejected", errors=e.error_count())
            return False

        appointment_id = parse_appointment_id(event.ButtonPayload)
        if appointment_id is None:
            logger.info("webhook_bad_appointment_id", payload=event.ButtonPayload)
            return False

        action = "confirm" if event.Body == "CONFIRM" else "cancel"
        try:
            if action == "confirm":
                success = await self.lifecycle.confirm(appointment_id)
            else:
                success = await self.lifecycle.cancel(appointment_id)
        except AppException as e:
            logger.info(
                "webhook_action_failed",
                appointment_id=appointment_id,
                action=action,
                error=e.message,
            )
            return False

        logger.info(
            "webhook_dispatched",
            appointment_id=appointment_id,
            action=action,
            success=success,
        )
        return success


def parse_appointment_id(value: str) -> int | None:
    """Parse a positive integer appointment ID, or None."""
    value = value.strip()
    if not value.isdigit():
        return None
    appointment_id = int(value)
    return appointment_id if appointment_id > 0 else None
