"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import os

# Deterministic gateway config for every test module, set before settings import
os.environ.setdefault("KASHIER_MODE", "live")
os.environ.setdefault("KASHIER_MERCHANT_ID", "MID-LIVE-1")
os.environ.setdefault("KASHIER_API_KEY", "live-api-key")
os.environ.setdefault("KASHIER_SECRET_KEY", "live-secret")
os.environ.setdefault("KASHIER_TEST_MERCHANT_ID", "MID-TEST-1")
os.environ.setdefault("KASHIER_TEST_API_KEY", "test-api-key")
os.environ.setdefault("KASHIER_TEST_SECRET_KEY", "test-secret")
os.environ.setdefault("KASHIER_TEST_USER_IDS", "sandbox-user")
os.environ.setdefault("API_BASE_URL", "https://api.example.com")
os.environ.setdefault("APP_BASE_URL", "https://cv.example.com")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from src.db.tables import Base
from src.db.engine import get_session

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


# Import app and override BEFORE any test module imports app
from src.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session

import src.db.engine as _engine_mod
_engine_mod.async_session = TestSession
_engine_mod.engine = test_engine

import src.db.transaction_tables  # noqa: E402,F401
import src.db.user_tables  # noqa: E402,F401
import src.db.subscription_tables  # noqa: E402,F401
from src.auth import create_access_token  # noqa: E402
from src.db.user_tables import UserRow, free_subscription  # noqa: E402


from contextlib import asynccontextmanager

@asynccontextmanager
async def get_test_session():
    """Context manager for seeding data in tests."""
    async with TestSession() as session:
        yield session


async def seed_user(user_id: str = "user-1", email: str = "user1@example.com", **fields) -> None:
    async with TestSession() as session:
        session.add(UserRow(
            id=user_id,
            email=email,
            display_name=fields.pop("display_name", "Test User"),
            subscription=fields.pop("subscription", free_subscription()),
            subscription_history=fields.pop("subscription_history", []),
            **fields,
        ))
        await session.commit()


def auth_headers(user_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after. Seeds the default user."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await seed_user()

    yield

    from src.services.purchase_tracking import purchase_tracker
    await purchase_tracker.drain()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def make_user():
    """Seed extra users: `await make_user("user-2", "two@example.com")`."""
    return seed_user


@pytest_asyncio.fixture
async def auth():
    return auth_headers
