"""Shared test fixtures for the clinic booking API tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
"""

from datetime import date, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_booking.core.database import Base, get_db, get_session_factory
from clinic_booking.main import app

# Import all models to ensure they're registered with Base.metadata
from clinic_booking.models.appointment import Appointment
from clinic_booking.models.audit import AuditLog, AuditOutbox
from clinic_booking.models.availability import ProviderAvailability
from clinic_booking.models.clinic import Clinic, Location
from clinic_booking.models.opening_hours import OpeningHours
from clinic_booking.models.patient import Patient
from clinic_booking.models.provider import Provider
from clinic_booking.models.slot_lock import SlotLock
from clinic_booking.models.tenant import Tenant
from clinic_booking.models.user import User
from clinic_booking.schemas.governance import ControlPlaneContext
from clinic_booking.services.clinic_time import local_time_to_utc


# Use aiosqlite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
TENANT_TZ = "America/New_York"
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


@pytest_asyncio.fixture(autouse=True)
async def engine():
    """Fresh in-memory database per test; every session shares its one connection."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    TestSession = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSession
    yield TestSession
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(session_factory):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db(session_factory):
    """Direct DB session for test setup/assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def clinic(db):
    """A tenant in New York with one clinic, one location and the people who book there.

    Company hours are Mon-Fri 08:00-18:00 and the provider works
    Mon-Fri 09:00-17:00 at any location.
    """
    db.add_all([
        Tenant(id=TENANT_ID, name="Acme Health", timezone=TENANT_TZ),
        Tenant(id=OTHER_TENANT_ID, name="Other Health", timezone="UTC"),
    ])
    await db.flush()

    clinic_row = Clinic(id=uuid4(), tenant_id=TENANT_ID, name="Main Street Clinic")
    db.add(clinic_row)
    await db.flush()
    location = Location(id=uuid4(), tenant_id=TENANT_ID, clinic_id=clinic_row.id, name="Exam Room 1")

    admin = User(id=uuid4(), tenant_id=TENANT_ID, email="frontdesk@acme.test", full_name="Front Desk", role="admin")
    patient_user = User(id=uuid4(), tenant_id=TENANT_ID, email="pat@example.com", full_name="Pat Lee", role="patient")
    provider_user = User(id=uuid4(), tenant_id=TENANT_ID, email="rivera@acme.test", role="provider")
    outsider = User(id=uuid4(), tenant_id=OTHER_TENANT_ID, email="someone@other.test", role="admin")
    db.add_all([location, admin, patient_user, provider_user, outsider])
    await db.flush()

    patient = Patient(id=uuid4(), tenant_id=TENANT_ID, user_id=patient_user.id, first_name="Pat", last_name="Lee")
    provider = Provider(id=uuid4(), tenant_id=TENANT_ID, user_id=provider_user.id, name="Dr. Rivera")
    db.add_all([patient, provider])
    await db.flush()

    for day in WEEKDAYS:
        db.add(OpeningHours(
            tenant_id=TENANT_ID, clinic_id=None, day_of_week=day, is_recurring=True,
            start_time="08:00", end_time="18:00",
        ))
        db.add(ProviderAvailability(
            tenant_id=TENANT_ID, provider_id=provider.id, day_of_week=day, is_recurring=True,
            start_time="09:00", end_time="17:00",
        ))
    await db.commit()

    return SimpleNamespace(
        tenant_id=TENANT_ID,
        timezone=TENANT_TZ,
        clinic_id=clinic_row.id,
        location_id=location.id,
        admin_id=admin.id,
        patient_user_id=patient_user.id,
        patient_id=patient.id,
        provider_id=provider.id,
        outsider_id=outsider.id,
    )


@pytest.fixture
def context():
    """Control-plane context for an admin acting in the test tenant."""
    return ControlPlaneContext(trace_id="trace-123", actor_id="frontdesk", tenant_id=TENANT_ID, actor_role="admin")


@pytest.fixture
def local():
    """``local(day, "10:00")`` gives the naive UTC instant of a New York wall-clock time."""
    def convert(day: date, clock: str) -> datetime:
        return local_time_to_utc(day, clock, TENANT_TZ)
    return convert


@pytest.fixture
def upcoming():
    """``upcoming(0)`` is the next Monday at least two days out, in New York."""
    def next_weekday(weekday: int) -> date:
        day = datetime.now(ZoneInfo(TENANT_TZ)).date() + timedelta(days=2)
        while day.weekday() != weekday:
            day += timedelta(days=1)
        return day
    return next_weekday
