"""
Dependency Injection Providers for Shyftcut Entitlements

FastAPI dependencies for the repositories. Providers are cached so a single
instance per process is shared; repositories hold no per-request state.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from shyftcut.infrastructure.db.repositories import (
    SubscriptionRepository,
    UsageCounterStore,
)


@lru_cache
def get_subscription_repository() -> SubscriptionRepository:
    """
    Dependency provider for SubscriptionRepository.

    Usage:
        @router.get("/subscription")
        async def read(repo: SubscriptionRepoDep):
            ...
    """
    return SubscriptionRepository()


@lru_cache
def get_usage_counter_store() -> UsageCounterStore:
    """Dependency provider for UsageCounterStore."""
    return UsageCounterStore()


# Type aliases for repository dependencies
SubscriptionRepoDep = Annotated[
    SubscriptionRepository,
    Depends(get_subscription_repository)
]
UsageCounterStoreDep = Annotated[
    UsageCounterStore,
    Depends(get_usage_counter_store)
]
