"""
Subscription Resolver

Fetches a user's subscription record and derives the tier entitlements are
computed from. Storage failures propagate as DatabaseError: an unknown
subscription state is never read as premium.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from shyftcut.domain.subscription import (
    Subscription,
    SubscriptionTier,
    effective_tier,
)
from shyftcut.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSubscription:
    """A subscription record (if any) and the tier it grants right now."""
    record: Optional[Subscription]
    tier: SubscriptionTier


class SubscriptionResolver:
    """Resolves the effective subscription tier for an authenticated user."""

    def __init__(self, repository: SubscriptionRepository):
        self._repository = repository

    async def get_record(self, user_id: str) -> Optional[Subscription]:
        return await self._repository.get_by_user_id(user_id)

    async def resolve(self, user_id: str) -> ResolvedSubscription:
        record = await self.get_record(user_id)
        tier = effective_tier(record)

        if record is not None and record.tier != tier:
            logger.debug(
                f"User {user_id} has {record.tier.value} subscription with status "
                f"'{record.status}'; entitlements fall back to {tier.value}"
            )

        return ResolvedSubscription(record=record, tier=tier)
