"""
Pytest fixtures for test database, client, and authentication.

The database defaults to a SQLite file (aiosqlite) so the suite runs
anywhere; set TEST_DATABASE_URL to a PostgreSQL URL to exercise real
row locks. Tables are created and dropped around every test.
"""

import os

os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test_storefront.db")
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
os.environ["REDIS_ENABLED"] = "false"
os.environ.setdefault("DOWNLOAD_TOKEN_SECRET", "test-download-secret")

from decimal import Decimal
from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.main import app
from storefront.db.base import Base
from storefront.db.session import create_engine, get_db
from storefront.core.security import create_access_token
from storefront.models import User, Event, DigitalProduct, Order
from storefront.models.order import ORDER_COMPLETED, ORDER_REFUNDED

from factories import add_all, make_event, purchase

@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create tables, yield the engine, then drop tables for isolation."""
    test_engine = create_engine(os.environ["TEST_DATABASE_URL"], echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()

@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Independent sessions, one per simulated concurrent client."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture(scope="function")
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get a fresh session on the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                if session.in_transaction():
                    await session.rollback()

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    user = User(email="test@example.com", username="testuser")
    await add_all(db_session, user)
    return user

@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(email="other@example.com", username="otheruser")
    await add_all(db_session, user)
    return user

@pytest_asyncio.fixture
async def auth_token(test_user: User) -> str:
    """Generate a JWT token for the test user."""
    return create_access_token(data={"sub": str(test_user.id)})

@pytest_asyncio.fixture
async def auth_headers(auth_token: str) -> dict:
    """Authorization headers with Bearer token."""
    return {"Authorization": f"Bearer {auth_token}"}

@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(other_user.id)})}"}

@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession) -> Event:
    """A published event 30 days out with 100 spots."""
    event = make_event()
    await add_all(db_session, event)
    return event

@pytest_asyncio.fixture
async def sold_out_event(db_session: AsyncSession) -> Event:
    event = make_event(slug="sold-out-show", title="Sold Out Show", capacity=50, available_spots=0)
    await add_all(db_session, event)
    return event

@pytest_asyncio.fixture
async def last_spot_event(db_session: AsyncSession) -> Event:
    """Capacity 1: two concurrent one-spot bookings race for it."""
    event = make_event(slug="last-spot", title="Intimate Session", capacity=1)
    await add_all(db_session, event)
    return event

@pytest_asyncio.fixture
async def product(db_session: AsyncSession) -> DigitalProduct:
    item = DigitalProduct(
        title="Field Recording Pack",
        slug="field-recording-pack",
        price=Decimal("12.00"),
        product_type="audio",
        file_url="https://files.example.com/field-recording-pack.zip",
        download_limit=3,
    )
    await add_all(db_session, item)
    return item

@pytest_asyncio.fixture
async def completed_order(db_session: AsyncSession, test_user: User, product: DigitalProduct) -> Order:
    return await purchase(db_session, test_user, product, ORDER_COMPLETED)

@pytest_asyncio.fixture
async def refunded_order(db_session: AsyncSession, other_user: User, product: DigitalProduct) -> Order:
    return await purchase(db_session, other_user, product, ORDER_REFUNDED)
