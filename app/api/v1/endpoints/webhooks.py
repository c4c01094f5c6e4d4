"""Messaging provider webhooks.

The provider retries anything other than 200, so once the form body parses
every outcome, including internal failures, is answered with 200.
"""

import structlog
from fastapi import APIRouter, Request, status
from pydantic import ValidationError

from app.dependencies import Dispatcher, Tracker
from app.schemas.webhooks import DeliveryStatusEvent, WebhookAck

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post(
    "/whatsapp",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Doctor button replies",
)
async def whatsapp_reply(request: Request, dispatcher: Dispatcher) -> WebhookAck:
    """
    Receive a CONFIRM/CANCEL button reply.

    The provider is always answered 200 once the form parses; the outcome
    of the action is only logged.
    """
    form = await request.form()
    try:
        handled = await dispatcher.dispatch(dict(form))
    except Exception:
        logger.exception("whatsapp_reply_failed", button_payload=form.get("ButtonPayload"))
        return WebhookAck(message="Ignored")
    return WebhookAck(message="Processed" if handled else "Ignored")


@router.post(
    "/delivery-status",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Message delivery receipts",
)
async def delivery_status(request: Request, tracker: Tracker) -> WebhookAck:
    """Receive a delivery status callback for an outbound message."""
    form = await request.form()
    try:
        event = DeliveryStatusEvent.model_validate(dict(form))
    except ValidationError as e:
        logger.info("delivery_status_rejected", errors=e.error_count())
        return WebhookAck(message="Ignored")

    try:
        acknowledged = await tracker.handle_status(event.MessageSid, event.MessageStatus)
    except Exception:
        logger.exception(
            "delivery_status_failed",
            message_sid=event.MessageSid,
            message_status=event.MessageStatus,
        )
        return WebhookAck(message="Ignored")
    return WebhookAck(message="Acknowledged" if acknowledged else "Recorded")
