import os
from collections.abc import AsyncGenerator
from datetime import date, datetime, time
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import UUID

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

from clinic_booking.config import settings
from clinic_booking.core.redis_client import get_redis_client
from clinic_booking.database import get_db, to_async_url
from clinic_booking.dependencies import get_notifier, get_session_factory
from clinic_booking.main import app
from clinic_booking.models import metadata, patients, services
from clinic_booking.schemas.notifications import AppointmentNotice

# Point TEST_DATABASE_URL at a disposable PostgreSQL database to run the suite
# against the production dialect; otherwise each test gets its own SQLite file.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

if TEST_DATABASE_URL and TEST_DATABASE_URL == settings.database_url:
    raise RuntimeError("TEST_DATABASE_URL must not point at the application database")

# Far enough ahead that "no bookings in the past" never triggers
BOOKING_DAY = date(2031, 6, 2)


def clinic_time(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware datetime of a clinic wall-clock time."""
    return datetime.combine(day, time(hour, minute), tzinfo=settings.clinic_tz)


def _serialize_sqlite_writes(engine: AsyncEngine) -> None:
    # SQLite has no row locks; an immediate transaction takes the database
    # write lock up front so concurrent sessions queue like SELECT ... FOR UPDATE.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class RecordingNotifier:
    """Notifier that remembers what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, AppointmentNotice, str | None]] = []

    def _record(self, kind: str, notice: AppointmentNotice, reason: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("mail server unavailable")
        self.sent.append((kind, notice, reason))

    async def notify_requested(self, notice: AppointmentNotice) -> None:
        self._record("requested", notice)

    async def notify_confirmed(self, notice: AppointmentNotice) -> None:
        self._record("confirmed", notice)

    async def notify_cancelled(self, notice: AppointmentNotice, reason: str | None) -> None:
        self._record("cancelled", notice, reason)

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database with all tables."""
    url = to_async_url(TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")
    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    if url.startswith("sqlite"):
        _serialize_sqlite_writes(engine)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier capturing outgoing notifications."""
    return RecordingNotifier()


@pytest.fixture
def mock_redis() -> MagicMock:
    """Redis stand-in whose rate-limit counter is always at its first hit."""
    redis_client = MagicMock()
    redis_client.incr.return_value = 1
    return redis_client


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: RecordingNotifier,
    mock_redis: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_redis_client] = lambda: mock_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _insert_service(session: AsyncSession, name: str, duration: int) -> UUID:
    result = await session.execute(
        insert(services)
        .values(name=name, description=f"{name} visit", duration=duration, price=Decimal("500.00"))
        .returning(services.c.id)
    )
    service_id = result.scalar_one()
    await session.commit()
    return service_id


@pytest_asyncio.fixture
async def consultation(db_session: AsyncSession) -> UUID:
    """A 30 minute service."""
    return await _insert_service(db_session, "Consultation", 30)


@pytest_asyncio.fixture
async def checkup(db_session: AsyncSession) -> UUID:
    """A 60 minute service."""
    return await _insert_service(db_session, "Full Check-up", 60)


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> UUID:
    """A registered patient."""
    result = await db_session.execute(
        insert(patients)
        .values(name="Asha Rao", email="asha@example.com", phone="+919876543210")
        .returning(patients.c.id)
    )
    patient_id = result.scalar_one()
    await db_session.commit()
    return patient_id
