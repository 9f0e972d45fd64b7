"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own database: a fresh SQLite file (aiosqlite) by
default, or the database named by TEST_DATABASE_URL (e.g. a PostgreSQL
test database) with tables created and dropped around the test.
Every HTTP request gets its own session, like production.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./event_booking_dev.db")

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from event_booking.main import app
from event_booking.db.base import Base
from event_booking.db.session import get_db, get_session_factory
from event_booking.core.security import create_access_token, hash_password
from event_booking.models.user import User
from event_booking.models.event import Event
from event_booking.services.notification_service import NotificationSender, get_notification_sender

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


class RecordingSender(NotificationSender):
    """Collects notifications instead of delivering them."""

    def __init__(self, fail_channels=()):
        self.sent = []
        self.fail_channels = set(fail_channels)

    async def send(self, channel, recipient, template, data):
        if channel in self.fail_channels:
            raise RuntimeError(f"{channel} provider unavailable")
        self.sent.append({"channel": channel, "recipient": recipient, "template": template, "data": data})


@pytest_asyncio.fixture
async def engine(tmp_path):
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
    test_engine = create_async_engine(url, poolclass=NullPool, connect_args=connect_args)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notification_sender() -> RecordingSender:
    return RecordingSender()


@pytest_asyncio.fixture
async def client(session_factory, notification_sender) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB, background session factory and sender overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_sender] = lambda: notification_sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Factory for users; skips bcrypt unless a password is given."""

    async def _make_user(password=None, **overrides) -> User:
        suffix = uuid.uuid4().hex[:8]
        fields = {
            "email": f"user_{suffix}@example.com",
            "username": f"user_{suffix}",
            "hashed_password": hash_password(password) if password else "not-a-real-hash",
        }
        fields.update(overrides)
        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make_user


@pytest.fixture
def make_event(session_factory):
    """Factory for events: published, 30 days out, 20 spots at 25.00 by default."""

    async def _make_event(**overrides) -> Event:
        capacity = overrides.pop("capacity", 20)
        fields = {
            "title": "Test Workshop",
            "slug": f"test-workshop-{uuid.uuid4().hex[:8]}",
            "description": "A test event",
            "price": Decimal("25.00"),
            "event_date": datetime.now(timezone.utc) + timedelta(days=30),
            "venue_name": "Test Venue",
            "venue_city": "Lisbon",
            "venue_country": "Portugal",
            "capacity": capacity,
            "available_spots": capacity,
            "is_published": True,
        }
        fields.update(overrides)
        async with session_factory() as session:
            event = Event(**fields)
            session.add(event)
            await session.commit()
            await session.refresh(event)
            return event

    return _make_event


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user(
        password="testpassword123",
        email="test@example.com",
        username="testuser",
        phone="+351912345678",
    )


@pytest_asyncio.fixture
async def other_user(make_user) -> User:
    return await make_user(email="other@example.com", username="otheruser")


@pytest_asyncio.fixture
async def admin_user(make_user) -> User:
    return await make_user(email="admin@example.com", username="admin", is_admin=True)


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest.fixture
def auth_headers(test_user) -> dict:
    return headers_for(test_user)


@pytest.fixture
def other_headers(other_user) -> dict:
    return headers_for(other_user)


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return headers_for(admin_user)


@pytest_asyncio.fixture
async def test_event(make_event) -> Event:
    return await make_event(title="Test Concert", slug="test-concert")


@pytest_asyncio.fixture
async def sold_out_event(make_event) -> Event:
    return await make_event(title="Sold Out Show", capacity=50, available_spots=0)


@pytest.fixture
def load_event(session_factory):
    """Re-read an event in a fresh session (live available_spots)."""

    async def _load(event_id) -> Event:
        async with session_factory() as session:
            return await session.get(Event, event_id)

    return _load
