"""Doctor and service models using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from app.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("website", Text, nullable=False),
    Column("whatsapp", String(20), nullable=True),
    Column("email", Text, nullable=True),
    Column("image_slug", Text, nullable=True),
    Column("feedback_link", Text, nullable=True),
    # Selects the message variable builders and reschedule policy
    Column("notification_profile", String(50), nullable=False, server_default="standard"),
    # Pre-registered WhatsApp content template ids, one per message kind
    Column("template_doctor_notify", String(64), nullable=True),
    Column("template_patient_ack", String(64), nullable=True),
    Column("template_patient_confirm", String(64), nullable=True),
    Column("template_patient_cancel", String(64), nullable=True),
    Column("template_reminder", String(64), nullable=True),
    Column("template_feedback", String(64), nullable=True),
    Column("template_reschedule", String(64), nullable=True),
    # {"<location label>" | "no location": ["10:00", "10:30", ...]}
    Column("timings", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

services = Table(
    "services",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "doctor_id",
        Integer,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", Text, nullable=False),
    UniqueConstraint("doctor_id", "name", name="unique_service_per_doctor"),
    Index("idx_services_doctor_id", "doctor_id"),
)
