"""Initial schema - doctors, patients, timeslots, appointments, message logs.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("NOW()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "doctors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("website", sa.Text(), nullable=False),
        sa.Column("whatsapp", sa.VARCHAR(length=20), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("image_slug", sa.Text(), nullable=True),
        sa.Column("feedback_link", sa.Text(), nullable=True),
        sa.Column(
            "notification_profile",
            sa.VARCHAR(length=50),
            server_default="standard",
            nullable=False,
        ),
        sa.Column("template_doctor_notify", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_patient_ack", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_patient_confirm", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_patient_cancel", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_reminder", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_feedback", sa.VARCHAR(length=64), nullable=True),
        sa.Column("template_reschedule", sa.VARCHAR(length=64), nullable=True),
        sa.Column("timings", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("doctor_id", "name", name="unique_service_per_doctor"),
    )
    op.create_index("idx_services_doctor_id", "services", ["doctor_id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("age", sa.VARCHAR(length=10), nullable=False),
        sa.Column("phone", sa.VARCHAR(length=20), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("sex", sa.VARCHAR(length=20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone"),
    )
    op.create_index("ix_patients_phone", "patients", ["phone"])

    op.create_table(
        "timeslots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("is_available", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("origin_type", sa.VARCHAR(length=10), server_default="FORM", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint(
            "origin_type IN ('MANUAL', 'FORM')",
            name="timeslots_origin_type_check",
        ),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("doctor_id", "start_time", name="unique_doctor_start_time"),
    )
    op.create_index(
        "idx_timeslots_doctor_available", "timeslots", ["doctor_id", "is_available"]
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=True),
        sa.Column("timeslot_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.VARCHAR(length=20), server_default="PENDING", nullable=False),
        *_timestamps(),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'RESCHEDULED')",
            name="appointments_status_check",
        ),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
        sa.ForeignKeyConstraint(["timeslot_id"], ["timeslots.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("idx_appointments_timeslot_id", "appointments", ["timeslot_id"])
    op.create_index("idx_appointments_status", "appointments", ["status"])

    op.create_table(
        "message_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_sid", sa.VARCHAR(length=64), nullable=False),
        sa.Column("appointment_id", sa.Integer(), nullable=False),
        sa.Column("message_type", sa.VARCHAR(length=30), nullable=False),
        sa.Column("recipient", sa.Text(), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="queued", nullable=False),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_sid"),
    )
    op.create_index("idx_message_logs_appointment_id", "message_logs", ["appointment_id"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_message_logs_appointment_id", table_name="message_logs")
    op.drop_table("message_logs")
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_timeslot_id", table_name="appointments")
    op.drop_index("idx_appointments_doctor_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("idx_timeslots_doctor_available", table_name="timeslots")
    op.drop_table("timeslots")
    op.drop_index("ix_patients_phone", table_name="patients")
    op.drop_table("patients")
    op.drop_index("idx_services_doctor_id", table_name="services")
    op.drop_table("services")
    op.drop_table("doctors")
