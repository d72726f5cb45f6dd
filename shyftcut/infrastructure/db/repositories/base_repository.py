"""
Base Repository for Shyftcut Entitlements

Shared plumbing for repositories that own their unit of work: session
scoping, dialect-aware upserts and translation of storage failures.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Type, Union
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from shyftcut.infrastructure.db.database import (
    SessionContextFactory,
    get_session_context,
)
from shyftcut.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)


def as_uuid(value: Union[str, UUID]) -> UUID:
    """Convert a user id to UUID for PostgreSQL compatibility."""
    return value if isinstance(value, UUID) else UUID(str(value))


class BaseRepository:
    """
    Repository that opens one transactional session per operation.

    Args:
        session_context: Factory for a transactional session scope.
            Defaults to the application engine.
    """

    table_name: str = ""

    def __init__(self, session_context: Optional[SessionContextFactory] = None):
        self._session_context = session_context or get_session_context

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """
        Session scope that surfaces storage failures as DatabaseError.

        Callers see either a committed result or a DatabaseError; they never
        get a partial answer they could mistake for "no limits".
        """
        try:
            async with self._session_context() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"{self.table_name}.{operation} failed: {e}")
            raise DatabaseError(
                f"Storage unavailable during {operation}",
                operation=operation,
                table=self.table_name,
                original_error=e,
            ) from e

    @staticmethod
    def _insert(session: AsyncSession, model: Type[SQLModel]):
        """INSERT construct supporting ON CONFLICT for the session's dialect."""
        dialect = session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert(model)
        return postgresql.insert(model)
