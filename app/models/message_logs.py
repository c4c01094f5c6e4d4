"""Outbound message log used to track delivery receipts."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    func,
)

from app.models.base import metadata

message_logs = Table(
    "message_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Provider message identifier (Twilio MessageSid)
    Column("message_sid", String(64), nullable=False, unique=True),
    Column(
        "appointment_id",
        Integer,
        ForeignKey("appointments.id"),
        nullable=False,
    ),
    Column("message_type", String(30), nullable=False),
    Column("recipient", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default="queued"),
    Column("delivered_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    Index("idx_message_logs_appointment_id", "appointment_id"),
)
