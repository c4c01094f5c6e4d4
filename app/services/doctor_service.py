"""Doctor lookups used by booking and messaging."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException, ValidationException
from app.core.timeouts import bounded
from app.models.doctors import doctors, services

NO_LOCATION = "no location"


class DoctorService:
    """Read-only access to doctors and their services."""

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        """Initialize service with database session."""
        self.db = db
        self.timeout = timeout or settings.store_timeout_seconds

    async def get_doctor(self, doctor_id: int) -> dict:
        """
        Get doctor by ID.

        Raises:
            NotFoundException: If the doctor does not exist
        """
        query = select(doctors).where(doctors.c.id == doctor_id)
        result = await bounded(self.db.execute(query), self.timeout, "doctor lookup")
        doctor = result.mappings().first()

        if not doctor:
            raise NotFoundException(f"Doctor {doctor_id} not found")

        return dict(doctor)

    async def get_service(self, service_id: int) -> dict | None:
        """Get a service by ID."""
        query = select(services).where(services.c.id == service_id)
        result = await bounded(self.db.execute(query), self.timeout, "service lookup")
        service = result.mappings().first()
        return dict(service) if service else None

    async def get_service_for_doctor(self, doctor_id: int, service_id: int) -> dict:
        """
        Resolve a service and check it is offered by the doctor.

        Raises:
            NotFoundException: If the service does not exist
            ValidationException: If the service belongs to another doctor
        """
        service = await self.get_service(service_id)
        if service is None:
            raise NotFoundException(f"Service {service_id} not found")
        if service["doctor_id"] != doctor_id:
            raise ValidationException("Selected service not found for the doctor")
        return service

    async def get_timings(self, doctor_id: int) -> dict[str, list[str]]:
        """Consultation times keyed by location label."""
        doctor = await self.get_doctor(doctor_id)
        timings = doctor.get("timings") or {}
        return {label: list(times) for label, times in timings.items()}
