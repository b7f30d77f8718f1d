"""
Pytest configuration and shared fixtures for tests
"""

import os

# must be set before booking_service.db is imported
os.environ["BOOKING_DB"] = "sqlite+aiosqlite://"
for var in ("RABBIT_URL", "REDIS_URL", "JWT_SECRET"):
    os.environ.pop(var, None)

import pytest
from httpx import ASGITransport, AsyncClient

from booking_service.db import Base, get_db, get_engine, get_session
from booking_service.main import app
from booking_service.models import User, UserType

from factories import BUSY_CLEANER, CLEANER, CLEANER_2, CLIENT, OTHER_CLIENT


@pytest.fixture(name="engine")
async def engine_fixture(tmp_path):
    """File-backed SQLite database so separate sessions see each other's commits"""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return get_session(engine)


@pytest.fixture(name="users")
async def users_fixture(session_factory):
    """Two clients, two available cleaners and one unavailable cleaner"""
    async with session_factory() as session:
        session.add_all(
            [
                User(email=CLIENT, first_name="Carla", last_name="Client", user_type=UserType.CLIENT),
                User(email=OTHER_CLIENT, first_name="Omar", last_name="Other", user_type=UserType.CLIENT),
                User(
                    email=CLEANER,
                    first_name="Anna",
                    last_name="Sparkle",
                    user_type=UserType.CLEANER,
                    rating=4.9,
                    phone="+254700000001",
                ),
                User(email=CLEANER_2, first_name="Ben", last_name="Broom", user_type=UserType.CLEANER, rating=4.5),
                User(
                    email=BUSY_CLEANER,
                    first_name="Bea",
                    last_name="Busy",
                    user_type=UserType.CLEANER,
                    is_available=False,
                ),
            ]
        )
        await session.commit()


@pytest.fixture(name="db")
async def db_fixture(session_factory, users):
    async with session_factory() as session:
        yield session


@pytest.fixture(name="api")
async def api_fixture(session_factory, users):
    """In-process HTTP client bound to the per-test database"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
