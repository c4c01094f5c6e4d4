"""Database models."""

from app.models.appointments import appointments
from app.models.base import metadata
from app.models.doctors import doctors, services
from app.models.message_logs import message_logs
from app.models.patients import patients
from app.models.timeslots import timeslots

__all__ = [
    "appointments",
    "doctors",
    "message_logs",
    "metadata",
    "patients",
    "services",
    "timeslots",
]
