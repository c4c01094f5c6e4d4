"""Inbound messaging provider webhook payloads."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ReplyEvent(BaseModel):
    """Button reply from a doctor on the appointment request message."""

    model_config = ConfigDict(extra="ignore")

    Body: Literal["CONFIRM", "CANCEL", "Cancel appointment"]
    ButtonPayload: str = Field(..., min_length=1)


class DeliveryStatusEvent(BaseModel):
    """Delivery receipt for an outbound message."""

    model_config = ConfigDict(extra="ignore")

    MessageSid: str = Field(..., min_length=1)
    MessageStatus: str = Field(..., min_length=1)


class WebhookAck(BaseModel):
    """Body returned to the provider."""

    message: str
