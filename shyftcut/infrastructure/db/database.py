"""
Database Configuration for Shyftcut Entitlements

Async SQLAlchemy engine and session management. One engine per process,
one short-lived session per unit of work.
"""

import re
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional
from urllib.parse import quote_plus

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy import text

from shyftcut.config.settings import settings
from shyftcut.infrastructure.exceptions import ConfigurationError


# Factory returning a transactional session scope; repositories accept one
# so they can be bound to another engine (tests use SQLite).
SessionContextFactory = Callable[[], AsyncContextManager[AsyncSession]]


def resolve_database_url() -> str:
    """
    PostgreSQL connection URL for the async engine.

    Uses DATABASE_URL when set, otherwise derives the direct connection
    from SUPABASE_URL + SUPABASE_PASSWORD.
    """
    if settings.database_url:
        database_url = settings.database_url
        if database_url.startswith("postgresql://"):
            database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return database_url

    if not settings.supabase_password:
        raise ConfigurationError(
            "Either DATABASE_URL or (SUPABASE_URL + SUPABASE_PASSWORD) is required",
            missing_keys=["DATABASE_URL", "SUPABASE_PASSWORD"],
        )

    match = re.match(r'https?://([^.]+)\.supabase\.co', settings.supabase_url)
    if not match:
        raise ConfigurationError(f"Invalid SUPABASE_URL format: {settings.supabase_url}")

    project_ref = match.group(1)
    password = quote_plus(settings.supabase_password)

    return (
        f"postgresql+asyncpg://postgres:{password}"
        f"@db.{project_ref}.supabase.co:5432/postgres"
    )


class DatabaseManager:
    """
    Owns the application engine and its session factory.

    Nothing connects until the first session is requested, so importing
    the app (or running the test suite) needs no database.
    """

    def __init__(self, database_url: Optional[str] = None):
        self._database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self._database_url or resolve_database_url(),
                echo=settings.database_echo,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_pre_ping=True,
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessionmaker

    async def ping(self) -> None:
        """Open one pooled connection and run a trivial query."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Process-wide DatabaseManager, created on first use."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> SessionContextFactory:
    """
    Build a session-context factory over an explicit sessionmaker.

    The scope commits when the block exits cleanly and rolls back on any
    exception.

    Usage:
        store = UsageCounterStore(session_context=session_scope(factory))
    """
    @asynccontextmanager
    async def _scope() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _scope


def get_session_context() -> AsyncContextManager[AsyncSession]:
    """
    Transactional session on the application engine.

    Usage:
        async with get_session_context() as session:
            await session.execute(stmt)
    """
    return session_scope(get_db_manager().session_factory)()


async def init_db() -> None:
    """Warm the connection pool (called on app startup)."""
    await get_db_manager().ping()


async def close_db() -> None:
    """Dispose of the connection pool (called on app shutdown)."""
    await get_db_manager().dispose()
