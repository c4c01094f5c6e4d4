import os
import tempfile
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

TEST_DB_PATH = Path(tempfile.gettempdir()) / "clinic_booking_test.db"

# Settings require these; tests never reach real services
os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DB_PATH}")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("WHATSAPP_FROM", "+14155238886")
os.environ.setdefault("PRACTICE_TIMEZONE", "Asia/Kolkata")

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import insert  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.config import settings  # noqa: E402
from app.database import async_database_url, get_db  # noqa: E402
from app.dependencies import get_job_scheduler, get_notification_gateway  # noqa: E402
from app.main import app  # noqa: E402
from app.models import doctors, metadata, services  # noqa: E402
from app.services.lifecycle_service import AppointmentLifecycle  # noqa: E402
from tests.fakes import FakeGateway, FakeScheduler  # noqa: E402

# Test database URL - MUST be different from production
TEST_DATABASE_URL = async_database_url(
    os.getenv("TEST_DATABASE_URL", f"sqlite:///{TEST_DB_PATH}")
)

# Use NullPool to avoid event loop issues between tests
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

DOCTOR_TEMPLATES = {
    "template_doctor_notify": "HXdoctornotify",
    "template_patient_ack": "HXpatientack",
    "template_patient_confirm": "HXpatientconfirm",
    "template_patient_cancel": "HXpatientcancel",
    "template_reminder": "HXreminder",
    "template_feedback": "HXfeedback",
    "template_reschedule": "HXreschedule",
}


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on fresh tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def gateway() -> FakeGateway:
    """Recording notification gateway."""
    return FakeGateway()


@pytest.fixture
def scheduler() -> FakeScheduler:
    """In-memory job scheduler."""
    return FakeScheduler()


@pytest.fixture
def lifecycle(db_session, gateway, scheduler) -> AppointmentLifecycle:
    """Lifecycle wired to the fakes."""
    return AppointmentLifecycle(db_session, gateway, scheduler, settings)


@pytest_asyncio.fixture
async def make_lifecycle(
    db_session, gateway, scheduler
) -> AsyncGenerator[Callable[[], AppointmentLifecycle], None]:
    """Build lifecycles on their own sessions, as separate requests would have."""
    sessions: list[AsyncSession] = []

    def factory() -> AppointmentLifecycle:
        session = TestSessionLocal()
        sessions.append(session)
        return AppointmentLifecycle(session, gateway, scheduler, settings)

    yield factory

    for session in sessions:
        await session.close()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    gateway: FakeGateway,
    scheduler: FakeScheduler,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_gateway] = lambda: gateway
    app.dependency_overrides[get_job_scheduler] = lambda: scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _insert_doctor(db_session: AsyncSession, **overrides) -> dict:
    values = {
        "name": "Dr. Asha Rao",
        "website": "asharao",
        "whatsapp": "9876500000",
        "email": None,
        "image_slug": "asha-rao",
        "feedback_link": "https://example.com/feedback/asha-rao",
        "notification_profile": "standard",
        "timings": {"no location": ["10:00", "10:30", "11:00"]},
        **DOCTOR_TEMPLATES,
        **overrides,
    }
    result = await db_session.execute(insert(doctors).values(**values))
    await db_session.commit()
    return {"id": result.inserted_primary_key[0], **values}


@pytest_asyncio.fixture
async def test_doctor(db_session) -> dict:
    """Doctor on the standard notification profile."""
    return await _insert_doctor(db_session)


@pytest_asyncio.fixture
async def service_line_doctor(db_session) -> dict:
    """Doctor whose reschedules hold the new slot immediately."""
    doctor = await _insert_doctor(
        db_session,
        name="Transplant Unit",
        website="transplant",
        whatsapp="9876511111",
        notification_profile="service_line",
    )
    result = await db_session.execute(
        insert(services).values(doctor_id=doctor["id"], name="Bone Marrow Consultation")
    )
    await db_session.commit()
    doctor["service_id"] = result.inserted_primary_key[0]
    return doctor


@pytest.fixture
def booking_data(test_doctor) -> dict:
    """Booking form payload for ``test_doctor``."""
    return {
        "doctor_id": test_doctor["id"],
        "patient": {
            "name": "Ravi Kumar",
            "age": "34",
            "phone": "9812345678",
            "email": None,
            "sex": "M",
        },
        "date": "2025-03-10",
        "time": "10:00",
        "origin": "FORM",
        "reason": "Follow-up visit",
    }
