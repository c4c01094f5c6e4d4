"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
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

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Ownership / references
    Column("doctor_id", Integer, ForeignKey("doctors.id"), nullable=False),
    Column("patient_id", Integer, ForeignKey("patients.id"), nullable=False),
    Column("service_id", Integer, ForeignKey("services.id"), nullable=True),
    Column("timeslot_id", Integer, ForeignKey("timeslots.id"), nullable=False),
    # Appointment details
    Column("date", Date, nullable=False),
    Column("location", Text, nullable=True),
    Column("reason", Text, nullable=True),
    # Status management
    Column(
        "status",
        String(20),
        nullable=False,
        server_default="PENDING",
    ),
    # Audit fields (rows are never deleted)
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    Column("cancelled_at", DateTime, nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'RESCHEDULED')",
        name="appointments_status_check",
    ),
    Index("idx_appointments_doctor_id", "doctor_id"),
    Index("idx_appointments_timeslot_id", "timeslot_id"),
    Index("idx_appointments_status", "status"),
)
