"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"


class OriginType(str, Enum):
    """How a timeslot came into existence."""

    MANUAL = "MANUAL"
    FORM = "FORM"


class PatientDetails(BaseModel):
    """Patient fields captured by the booking form."""

    name: str = Field(..., min_length=1, max_length=200)
    age: str = Field(..., min_length=1, max_length=10)
    phone: str | None = Field(None, description="10 digit WhatsApp number")
    email: str | None = Field(None, max_length=320)
    sex: str | None = Field(None, max_length=20)

    @field_validator("age")
    @classmethod
    def validate_age(cls, v: str) -> str:
        """Age must be numeric."""
        if not v.strip().isdigit():
            raise ValueError("Age must be a valid number")
        return v.strip()


class BookingRequest(BaseModel):
    """Schema for booking an appointment."""

    doctor_id: int
    patient: PatientDetails
    date: str | None = Field(None, description="Practice-local date, YYYY-MM-DD")
    time: str | None = Field(None, description="Practice-local time, HH:MM")
    origin: OriginType = OriginType.FORM
    service_id: int | None = None
    location: str | None = Field(None, max_length=200)
    reason: str | None = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    """Schema for moving an appointment to a new date and time."""

    date: str = Field(..., description="Practice-local date, YYYY-MM-DD")
    time: str = Field(..., description="Practice-local time, HH:MM")


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: int
    doctor_id: int
    patient_id: int
    service_id: int | None = None
    timeslot_id: int
    date: date
    status: AppointmentStatus
    location: str | None = None
    reason: str | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    doctor_id: int | None = None
    status: AppointmentStatus | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class TransitionResponse(BaseModel):
    """Result of a confirm or cancel action."""

    success: bool


class RescheduleResponse(BaseModel):
    """Result of a reschedule action."""

    success: bool
    appointment: AppointmentResponse | None = None
    message: str | None = None
