"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool, NullPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.reliability import gateway_circuit_breaker
from backend.app.domain.events import event_bus, ParcelEnteredReceived, InvoicePaid
from backend.app.domain.handlers import register_handlers
from backend.app.models.enums import UserRole
from backend.app.services.address_allocator import allocate_address
from backend.tests.helpers import create_user, create_hub, create_category

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Route every request to the in-memory database."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    register_handlers()
    gateway_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed database for concurrency tests: every session gets its
    own connection, so concurrent tasks really interleave.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest.fixture
async def client_user(db_session):
    return await create_user(db_session, "jean.dupont@example.com", first_name="Jean", last_name="Dupont")


@pytest.fixture
async def other_client(db_session):
    return await create_user(db_session, "marie.joseph@example.com", first_name="Marie", last_name="Joseph")


@pytest.fixture
async def agent_user(db_session):
    return await create_user(db_session, "agent@forwarding.local", role=UserRole.AGENT)


@pytest.fixture
async def admin_user(db_session):
    return await create_user(db_session, "admin@forwarding.local", role=UserRole.ADMIN)


@pytest.fixture
async def hubs(db_session):
    return {code: await create_hub(db_session, code) for code in ("MIA", "NMB")}


@pytest.fixture
async def electronics(db_session):
    return await create_category(db_session, "Electronics", "15.00", "3.00")


@pytest.fixture
async def client_address(db_session, client_user, hubs):
    return await allocate_address(db_session, client_user.id, "MIA")


@pytest.fixture
def bus():
    """The process event bus; subscriptions changed by a test are restored."""
    saved = {t: event_bus.handlers_for(t) for t in (ParcelEnteredReceived, InvoicePaid)}
    yield event_bus
    for event_type, handlers in saved.items():
        for handler in event_bus.handlers_for(event_type):
            event_bus.unsubscribe(event_type, handler)
        for handler in handlers:
            event_bus.subscribe(event_type, handler)
