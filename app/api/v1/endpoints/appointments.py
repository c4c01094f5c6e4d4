"""Appointment endpoints."""

from datetime import date

from fastapi import APIRouter, Query, status

from app.core.exceptions import NotFoundException
from app.dependencies import DatabaseSession, Lifecycle
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    BookingRequest,
    RescheduleRequest,
    RescheduleResponse,
    TransitionResponse,
)
from app.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book an appointment",
)
async def create_appointment(
    data: BookingRequest,
    lifecycle: Lifecycle,
) -> AppointmentResponse:
    """
    Book an appointment from the booking form or the front desk.

    Args:
        data: Booking details; ``origin`` is FORM for patients, MANUAL for staff
        lifecycle: Appointment lifecycle

    Returns:
        Created appointment
    """
    return await lifecycle.create(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: int | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        db: Database session
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await AppointmentService(db).list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(appointment_id: int, db: DatabaseSession) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    appointment = await AppointmentService(db).get(appointment_id)
    if appointment is None:
        raise NotFoundException(f"Appointment {appointment_id} not found")
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/{appointment_id}/confirm",
    response_model=TransitionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Confirm appointment",
)
async def confirm_appointment(appointment_id: int, lifecycle: Lifecycle) -> TransitionResponse:
    """
    Confirm a pending appointment.

    ``success`` is false when the appointment cannot be confirmed (cancelled,
    slot taken) or when the patient could not be notified.
    """
    return TransitionResponse(success=await lifecycle.confirm(appointment_id))


@router.post(
    "/{appointment_id}/cancel",
    response_model=TransitionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(appointment_id: int, lifecycle: Lifecycle) -> TransitionResponse:
    """Cancel an appointment and free its timeslot."""
    return TransitionResponse(success=await lifecycle.cancel(appointment_id))


@router.post(
    "/{appointment_id}/reschedule",
    response_model=RescheduleResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    lifecycle: Lifecycle,
) -> RescheduleResponse:
    """
    Move an appointment to a new date and time.

    Args:
        appointment_id: Appointment ID
        data: New practice-local date and time
        lifecycle: Appointment lifecycle

    Returns:
        The updated appointment, or ``success: false`` with the reason
    """
    result = await lifecycle.reschedule(appointment_id, data.date, data.time)
    if isinstance(result, str):
        return RescheduleResponse(success=False, message=result)
    return RescheduleResponse(success=True, appointment=result)
