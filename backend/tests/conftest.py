"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.core.config import TrackingConfig
from backend.app.core.dependencies import get_admission_engine, get_consent_ledger
from backend.app.core.jwt import create_access_token
from backend.app.db.session import get_db, Base
from backend.app.domain.admission.trip_admission import TripAdmissionEngine
from backend.app.services.consent_ledger import ConsentLedger
from backend.tests.factories import Factory, FrozenClock

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", set_sqlite_pragma)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def factory(session_factory):
    async with session_factory() as session:
        yield Factory(session)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def tracking_config():
    return TrackingConfig()


@pytest.fixture
def ledger(tracking_config, clock):
    return ConsentLedger(tracking_config, clock)


@pytest.fixture
def admission_engine(tracking_config, ledger, clock):
    return TripAdmissionEngine(tracking_config, ledger=ledger, clock=clock)


@pytest.fixture
async def client(session_factory, tracking_config, ledger, admission_engine):
    """Async client for testing, wired to the test database and clock."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_consent_ledger] = lambda: ledger
    app.dependency_overrides[get_admission_engine] = lambda: admission_engine

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def auth_headers():
    token = create_access_token(data={"sub": "ops.planner", "user_id": 7})
    return {"Authorization": f"Bearer {token}"}
