"""Timeslot model definition using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    UniqueConstraint,
    func,
    true,
)

from app.models.base import metadata

timeslots = Table(
    "timeslots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "doctor_id",
        Integer,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    # Naive UTC instant; see app.core.timezone
    Column("start_time", DateTime, nullable=False),
    Column("is_available", Boolean, nullable=False, server_default=true()),
    Column("origin_type", String(10), nullable=False, server_default="FORM"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "origin_type IN ('MANUAL', 'FORM')",
        name="timeslots_origin_type_check",
    ),
    UniqueConstraint("doctor_id", "start_time", name="unique_doctor_start_time"),
    Index("idx_timeslots_doctor_available", "doctor_id", "is_available"),
)
