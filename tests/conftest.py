"""
Test configuration and fixtures for Shyftcut Entitlements.

Provides shared fixtures for unit and integration tests.
"""

import os

# Settings are read at import time; configure the test environment first.
os.environ["SUPABASE_URL"] = "https://testproject.supabase.co"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-at-least-32-bytes!"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["ENVIRONMENT"] = "development"
os.environ["USAGE_ENFORCEMENT"] = "soft"
os.environ["USAGE_TIMEZONE"] = "UTC"
os.environ.pop("DATABASE_URL", None)

import time
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from shyftcut.domain.usage import UsageSnapshot


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application with a clean override table."""
    from shyftcut.main import app
    app.dependency_overrides.clear()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def no_jwks():
    """Tests never reach the Supabase JWKS endpoint; tokens are HS256."""
    with patch(
        "shyftcut.api.dependencies._decode_with_jwks",
        side_effect=jwt.InvalidTokenError("JWKS disabled in tests"),
    ) as mock_decode:
        yield mock_decode


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture
def mock_user_id() -> str:
    return "11111111-2222-3333-4444-555555555555"


def make_token(user_id: str, expires_in: int = 3600, **claims) -> str:
    """Sign a Supabase-style HS256 access token with the test secret."""
    from shyftcut.config.settings import get_settings

    settings = get_settings()
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + expires_in,
        **claims,
    }
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def auth_headers(mock_user_id) -> dict:
    return {"Authorization": f"Bearer {make_token(mock_user_id)}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Key": "test-admin-key"}


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_subscription_repo():
    """Mock for SubscriptionRepository."""
    mock = MagicMock()
    mock.get_by_user_id = AsyncMock(return_value=None)
    mock.upsert = AsyncMock()
    return mock


@pytest.fixture
def mock_usage_store():
    """Mock for UsageCounterStore."""
    mock = MagicMock()
    mock.get_snapshot = AsyncMock(return_value=UsageSnapshot())
    mock.increment = AsyncMock()
    mock.decrement = AsyncMock(return_value=0)
    mock.revert = AsyncMock(return_value=0)
    mock.reset = AsyncMock(return_value=0)
    mock.purge_keys = AsyncMock(return_value=0)
    return mock


@pytest.fixture
def override_repositories(app, mock_subscription_repo, mock_usage_store):
    """Route the app's repository providers to the mocks."""
    from shyftcut.infrastructure.db.dependencies import (
        get_subscription_repository,
        get_usage_counter_store,
    )

    app.dependency_overrides[get_subscription_repository] = lambda: mock_subscription_repo
    app.dependency_overrides[get_usage_counter_store] = lambda: mock_usage_store
    return mock_subscription_repo, mock_usage_store


# =============================================================================
# SQLite-backed store fixtures
# =============================================================================

@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    File-backed SQLite database with the full schema.

    A file (not :memory:) gives every session its own connection, so
    concurrent increments really race on the database.
    """
    import shyftcut.infrastructure.db.models  # noqa: F401  (register tables)

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'usage.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


class FrozenClock:
    """Settable clock for period-rollover tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def usage_store(session_factory, clock):
    from shyftcut.infrastructure.db.database import session_scope
    from shyftcut.infrastructure.db.repositories import UsageCounterStore

    return UsageCounterStore(
        session_context=session_scope(session_factory),
        tz=timezone.utc,
        clock=clock,
    )


@pytest.fixture
def subscription_repo(session_factory):
    from shyftcut.infrastructure.db.database import session_scope
    from shyftcut.infrastructure.db.repositories import SubscriptionRepository

    return SubscriptionRepository(session_context=session_scope(session_factory))
