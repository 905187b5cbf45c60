"""
Pytest configuration and fixtures.
Provides an in-memory database, a test app client and the usual cast of users.
"""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from timeflow.main import app
from timeflow.db import session as db_session
from timeflow.db.init_db import create_tables
from timeflow.db.session import get_db
from timeflow.models.user import UserRole

from tests.factories import create_user, create_project


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def test_session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
async def test_db_session(test_session_maker):
    """
    Create a test database session.
    Uses in-memory SQLite for fast tests.
    """
    async with test_session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def test_client(test_session_maker, monkeypatch):
    """
    Create a test HTTP client bound to the test database.
    """
    async def override_get_db():
        async with test_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(db_session, "async_session_maker", test_session_maker)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def employee(test_db_session):
    return await create_user(test_db_session, "Erin Employee")


@pytest.fixture
async def lead(test_db_session):
    return await create_user(test_db_session, "Lee Lead", UserRole.LEAD)


@pytest.fixture
async def manager(test_db_session):
    return await create_user(test_db_session, "Morgan Manager", UserRole.MANAGER)


@pytest.fixture
async def project(test_db_session, lead, manager):
    return await create_project(test_db_session, "Apollo", lead=lead, manager=manager)
