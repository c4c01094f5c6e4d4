"""Doctor schemas."""

from pydantic import BaseModel


class BookedSlot(BaseModel):
    """A held timeslot in practice-local time."""

    date: str
    time: str


class DoctorTimingsResponse(BaseModel):
    """Consultation times per location label."""

    doctor_id: int
    timings: dict[str, list[str]]
