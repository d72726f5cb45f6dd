"""
Unit tests for database URL resolution and the engine manager.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import text

from shyftcut.config.settings import get_settings
from shyftcut.infrastructure.db import database
from shyftcut.infrastructure.db.database import DatabaseManager, resolve_database_url
from shyftcut.infrastructure.exceptions import ConfigurationError


class TestResolveDatabaseUrl:

    @pytest.mark.parametrize("url", [
        "postgresql://u:p@host:5432/db",
        "postgres://u:p@host:5432/db",
        "postgresql+asyncpg://u:p@host:5432/db",
    ])
    def test_explicit_url_uses_asyncpg(self, url):
        with patch.object(get_settings(), "database_url", url):
            assert resolve_database_url() == "postgresql+asyncpg://u:p@host:5432/db"

    def test_derived_from_supabase(self):
        s = get_settings()
        with patch.object(s, "database_url", None), \
             patch.object(s, "supabase_password", "p@ss word"):
            assert resolve_database_url() == (
                "postgresql+asyncpg://postgres:p%40ss+word"
                "@db.testproject.supabase.co:5432/postgres"
            )

    def test_missing_configuration(self):
        s = get_settings()
        with patch.object(s, "database_url", None), \
             patch.object(s, "supabase_password", None):
            with pytest.raises(ConfigurationError) as exc_info:
                resolve_database_url()

        assert exc_info.value.details["missing_keys"] == ["DATABASE_URL", "SUPABASE_PASSWORD"]

    def test_invalid_supabase_url(self):
        s = get_settings()
        with patch.object(s, "database_url", None), \
             patch.object(s, "supabase_password", "secret"), \
             patch.object(s, "supabase_url", "https://example.com"):
            with pytest.raises(ConfigurationError):
                resolve_database_url()


class TestDatabaseManager:

    async def test_lazy_engine(self, tmp_path):
        manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'lazy.db'}")
        assert manager._engine is None

        await manager.ping()
        assert manager.engine is manager.session_factory.kw["bind"]

        await manager.dispose()
        assert manager._engine is None

    async def test_session_context_commits_and_rolls_back(self, tmp_path):
        manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'scope.db'}")

        with patch.object(database, "_db_manager", manager):
            async with database.get_session_context() as session:
                await session.execute(text("CREATE TABLE t (x INTEGER)"))
                await session.execute(text("INSERT INTO t VALUES (1)"))

            with pytest.raises(RuntimeError):
                async with database.get_session_context() as session:
                    await session.execute(text("INSERT INTO t VALUES (2)"))
                    raise RuntimeError("abort")

            async with database.get_session_context() as session:
                rows = (await session.execute(text("SELECT x FROM t"))).scalars().all()

            await database.close_db()

        assert rows == [1]
