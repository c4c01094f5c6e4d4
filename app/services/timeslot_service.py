"""Timeslot store."""

from datetime import datetime

from sqlalchemy import and_, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import TransientException
from app.core.timeouts import bounded
from app.database import insert_ignore
from app.models.appointments import appointments
from app.models.timeslots import timeslots
from app.schemas.appointments import AppointmentStatus, OriginType

# Appointment statuses that keep a slot held
HOLDING_STATUSES = (AppointmentStatus.CONFIRMED.value, AppointmentStatus.RESCHEDULED.value)


class TimeslotService:
    """
    Service for timeslot rows.

    None of the methods commit; availability changes are always part of a
    larger appointment transition owned by the caller.
    """

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        """Initialize service with database session."""
        self.db = db
        self.timeout = timeout or settings.store_timeout_seconds

    async def get(self, timeslot_id: int) -> dict | None:
        """Get timeslot by ID."""
        query = select(timeslots).where(timeslots.c.id == timeslot_id)
        result = await bounded(self.db.execute(query), self.timeout, "timeslot lookup")
        row = result.mappings().first()
        return dict(row) if row else None

    async def find(self, doctor_id: int, start_time: datetime) -> dict | None:
        """Get the slot for a doctor at an exact instant."""
        query = select(timeslots).where(
            and_(
                timeslots.c.doctor_id == doctor_id,
                timeslots.c.start_time == start_time,
            )
        )
        result = await bounded(self.db.execute(query), self.timeout, "timeslot lookup")
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_or_create(
        self,
        doctor_id: int,
        start_time: datetime,
        origin: OriginType,
    ) -> dict:
        """
        Get the slot at ``(doctor_id, start_time)``, creating it if absent.

        An existing slot is returned untouched, whatever its availability or
        origin. Concurrent identical calls converge on one row through the
        ``(doctor_id, start_time)`` unique constraint.

        Args:
            doctor_id: Doctor ID
            start_time: Naive UTC instant
            origin: Origin recorded when the slot is created

        Returns:
            Timeslot row as a dict
        """
        stmt = insert_ignore(self.db, timeslots, ["doctor_id", "start_time"]).values(
            doctor_id=doctor_id,
            start_time=start_time,
            is_available=True,
            origin_type=origin.value,
        )
        await bounded(self.db.execute(stmt), self.timeout, "timeslot insert")

        slot = await self.find(doctor_id, start_time)
        if slot is None:
            raise TransientException("Timeslot could not be stored")
        return slot

    async def hold(self, timeslot_id: int) -> bool:
        """
        Mark a slot unavailable if it is currently available.

        Returns:
            False if the slot was already held
        """
        stmt = (
            update(timeslots)
            .where(
                and_(
                    timeslots.c.id == timeslot_id,
                    timeslots.c.is_available.is_(True),
                )
            )
            .values(is_available=False)
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "timeslot hold")
        return result.rowcount == 1

    async def release(self, timeslot_id: int, appointment_id: int) -> bool:
        """
        Mark a slot available unless another live appointment holds it.

        Args:
            timeslot_id: Slot to free
            appointment_id: Appointment giving the slot up

        Returns:
            True if the slot is available afterwards
        """
        other_holder = exists().where(
            and_(
                appointments.c.timeslot_id == timeslot_id,
                appointments.c.id != appointment_id,
                appointments.c.status.in_(HOLDING_STATUSES),
            )
        )
        stmt = (
            update(timeslots)
            .where(and_(timeslots.c.id == timeslot_id, ~other_holder))
            .values(is_available=True)
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "timeslot release")
        return result.rowcount == 1

    async def list_booked(self, doctor_id: int) -> list[dict]:
        """List held slots for a doctor, earliest first."""
        query = (
            select(timeslots)
            .where(
                and_(
                    timeslots.c.doctor_id == doctor_id,
                    timeslots.c.is_available.is_(False),
                )
            )
            .order_by(timeslots.c.start_time)
        )
        result = await bounded(self.db.execute(query), self.timeout, "booked slots lookup")
        return [dict(row) for row in result.mappings().all()]
