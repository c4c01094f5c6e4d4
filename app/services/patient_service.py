"""Patient upsert keyed by phone number."""

import re

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import ValidationException
from app.core.timeouts import bounded
from app.core.timezone import utcnow
from app.database import insert_ignore
from app.models.patients import patients
from app.schemas.appointments import PatientDetails

logger = structlog.get_logger(__name__)

PHONE_PATTERN = re.compile(r"^\d{10}$")
MUTABLE_FIELDS = ("name", "age", "email", "sex")


class PatientService:
    """Service for patient records."""

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        """Initialize service with database session."""
        self.db = db
        self.timeout = timeout or settings.store_timeout_seconds

    async def get_by_phone(self, phone: str) -> dict | None:
        """Find a patient by phone."""
        query = select(patients).where(patients.c.phone == phone)
        result = await bounded(self.db.execute(query), self.timeout, "patient lookup")
        row = result.mappings().first()
        return dict(row) if row else None

    async def get(self, patient_id: int) -> dict | None:
        """Find a patient by ID."""
        query = select(patients).where(patients.c.id == patient_id)
        result = await bounded(self.db.execute(query), self.timeout, "patient lookup")
        row = result.mappings().first()
        return dict(row) if row else None

    async def upsert(self, details: PatientDetails) -> dict:
        """
        Insert a patient or refresh the mutable fields of an existing one.

        The phone number is the natural key and is never rewritten. Fields
        left empty on a repeat booking keep their stored value. Does not
        commit; the caller owns the transaction.

        Args:
            details: Patient fields from the booking

        Returns:
            Patient row as a dict

        Raises:
            ValidationException: If the phone number is missing or malformed
        """
        phone = (details.phone or "").strip()
        if not phone:
            raise ValidationException("Phone number is required")
        if not PHONE_PATTERN.match(phone):
            raise ValidationException("Invalid phone number format")

        stmt = insert_ignore(self.db, patients, ["phone"]).values(
            name=details.name,
            age=details.age,
            phone=phone,
            email=details.email,
            sex=details.sex,
        )
        await bounded(self.db.execute(stmt), self.timeout, "patient insert")

        existing = await self.get_by_phone(phone)
        if existing is None:
            raise ValidationException("Patient could not be stored")

        changes = {
            field: getattr(details, field)
            for field in MUTABLE_FIELDS
            if getattr(details, field) is not None and getattr(details, field) != existing[field]
        }
        if not changes:
            return existing

        changes["updated_at"] = utcnow()
        await bounded(
            self.db.execute(
                update(patients).where(patients.c.id == existing["id"]).values(**changes)
            ),
            self.timeout,
            "patient update",
        )
        logger.info("patient_updated", patient_id=existing["id"], fields=sorted(changes))
        return {**existing, **changes}
