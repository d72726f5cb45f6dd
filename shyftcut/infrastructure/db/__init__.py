"""
Database Infrastructure Package for Shyftcut Entitlements

Exports database utilities and repository providers.
"""

from shyftcut.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session_context,
    session_scope,
    init_db,
    close_db,
)

from shyftcut.infrastructure.db.dependencies import (
    get_subscription_repository,
    get_usage_counter_store,
    SubscriptionRepoDep,
    UsageCounterStoreDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session_context",
    "session_scope",
    "init_db",
    "close_db",
    # Dependencies
    "get_subscription_repository",
    "get_usage_counter_store",
    "SubscriptionRepoDep",
    "UsageCounterStoreDep",
]
