"""
Repository Layer for Shyftcut Entitlements

Exports all repository classes for dependency injection.
"""

from shyftcut.infrastructure.db.repositories.base_repository import (
    BaseRepository,
)
from shyftcut.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from shyftcut.infrastructure.db.repositories.usage_counter_repository import (
    UsageCounterStore,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "SubscriptionRepository",
    "UsageCounterStore",
]
