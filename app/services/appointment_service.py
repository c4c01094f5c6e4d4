"""Appointment store."""

from dataclasses import dataclass
from datetime import date

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException, TransientException
from app.core.timeouts import bounded
from app.core.timezone import utcnow
from app.models.appointments import appointments
from app.models.doctors import doctors, services
from app.models.patients import patients
from app.models.timeslots import timeslots
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
)


@dataclass
class AppointmentDetails:
    """An appointment with the rows its messages are built from."""

    appointment: dict
    doctor: dict
    patient: dict
    timeslot: dict
    service: dict | None = None

    @property
    def id(self) -> int:
        """Appointment ID."""
        return self.appointment["id"]


class AppointmentService:
    """
    Service for appointment rows.

    Writes do not commit. Status changes go through ``transition`` and
    ``rebind``, which only touch rows still in an expected status so that
    racing writers cannot both win.
    """

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        """Initialize service with database session."""
        self.db = db
        self.timeout = timeout or settings.store_timeout_seconds

    async def _fetch_one(self, query, operation: str) -> dict | None:
        result = await bounded(self.db.execute(query), self.timeout, operation)
        row = result.mappings().first()
        return dict(row) if row else None

    async def create(
        self,
        doctor_id: int,
        patient_id: int,
        timeslot_id: int,
        appointment_date: date,
        service_id: int | None = None,
        location: str | None = None,
        reason: str | None = None,
    ) -> dict:
        """
        Insert a PENDING appointment.

        Returns:
            Created appointment row
        """
        stmt = insert(appointments).values(
            doctor_id=doctor_id,
            patient_id=patient_id,
            service_id=service_id,
            timeslot_id=timeslot_id,
            date=appointment_date,
            location=location,
            reason=reason or None,
            status=AppointmentStatus.PENDING.value,
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "appointment insert")
        appointment_id = result.inserted_primary_key[0]

        row = await self.get(appointment_id)
        if row is None:
            raise TransientException("Appointment could not be stored")
        return row

    async def get(self, appointment_id: int) -> dict | None:
        """Get appointment by ID."""
        return await self._fetch_one(
            select(appointments).where(appointments.c.id == appointment_id),
            "appointment lookup",
        )

    async def get_details(self, appointment_id: int) -> AppointmentDetails:
        """
        Load an appointment with its doctor, patient, timeslot and service.

        Raises:
            NotFoundException: If the appointment or a required relation is missing
        """
        appointment = await self.get(appointment_id)
        if appointment is None:
            raise NotFoundException(f"Appointment {appointment_id} not found")

        doctor = await self._fetch_one(
            select(doctors).where(doctors.c.id == appointment["doctor_id"]),
            "doctor lookup",
        )
        if doctor is None:
            raise NotFoundException(f"Doctor for appointment {appointment_id} not found")

        patient = await self._fetch_one(
            select(patients).where(patients.c.id == appointment["patient_id"]),
            "patient lookup",
        )
        if patient is None:
            raise NotFoundException(f"Patient for appointment {appointment_id} not found")

        timeslot = await self._fetch_one(
            select(timeslots).where(timeslots.c.id == appointment["timeslot_id"]),
            "timeslot lookup",
        )
        if timeslot is None:
            raise NotFoundException(f"Timeslot for appointment {appointment_id} not found")

        service = None
        if appointment["service_id"] is not None:
            service = await self._fetch_one(
                select(services).where(services.c.id == appointment["service_id"]),
                "service lookup",
            )

        return AppointmentDetails(
            appointment=appointment,
            doctor=doctor,
            patient=patient,
            timeslot=timeslot,
            service=service,
        )

    async def transition(
        self,
        appointment_id: int,
        expected: AppointmentStatus,
        target: AppointmentStatus,
    ) -> bool:
        """
        Move an appointment from ``expected`` to ``target`` status.

        Returns:
            False if the row was no longer in ``expected`` status
        """
        values: dict = {"status": target.value, "updated_at": utcnow()}
        if target == AppointmentStatus.CANCELLED:
            values["cancelled_at"] = utcnow()

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status == expected.value,
                )
            )
            .values(**values)
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "appointment transition")
        return result.rowcount == 1

    async def rebind(
        self,
        appointment_id: int,
        expected: AppointmentStatus,
        timeslot_id: int,
        appointment_date: date,
    ) -> bool:
        """
        Point an appointment at a new timeslot and mark it RESCHEDULED.

        Returns:
            False if the row was no longer in ``expected`` status
        """
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status == expected.value,
                )
            )
            .values(
                status=AppointmentStatus.RESCHEDULED.value,
                timeslot_id=timeslot_id,
                date=appointment_date,
                updated_at=utcnow(),
            )
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "appointment rebind")
        return result.rowcount == 1

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments, newest date first
        """
        conditions = []

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.from_date:
            conditions.append(appointments.c.date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.date <= filters.to_date)

        count_stmt = select(func.count()).select_from(appointments).where(and_(True, *conditions))
        total_result = await bounded(self.db.execute(count_stmt), self.timeout, "appointment count")
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(and_(True, *conditions))
            .order_by(appointments.c.date.desc(), appointments.c.id.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "appointment list")

        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )
