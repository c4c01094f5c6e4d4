"""Doctor endpoints used by the booking form."""

from fastapi import APIRouter, status

from app.core.timezone import slot_key
from app.dependencies import DatabaseSession
from app.schemas.doctors import BookedSlot, DoctorTimingsResponse
from app.services.doctor_service import DoctorService
from app.services.timeslot_service import TimeslotService

router = APIRouter()


@router.get(
    "/{doctor_id}/booked-slots",
    response_model=list[BookedSlot],
    status_code=status.HTTP_200_OK,
    summary="List booked slots",
)
async def list_booked_slots(doctor_id: int, db: DatabaseSession) -> list[BookedSlot]:
    """
    List the doctor's held timeslots in practice-local date and time.

    The booking form greys these out.
    """
    await DoctorService(db).get_doctor(doctor_id)
    slots = await TimeslotService(db).list_booked(doctor_id)

    booked = []
    for slot in slots:
        slot_date, slot_time = slot_key(slot["start_time"])
        booked.append(BookedSlot(date=slot_date, time=slot_time))
    return booked


@router.get(
    "/{doctor_id}/timings",
    response_model=DoctorTimingsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get consultation timings",
)
async def get_timings(doctor_id: int, db: DatabaseSession) -> DoctorTimingsResponse:
    """Get consultation times per location."""
    timings = await DoctorService(db).get_timings(doctor_id)
    return DoctorTimingsResponse(doctor_id=doctor_id, timings=timings)
