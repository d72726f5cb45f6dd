"""
Subscription Repository

Data access layer for subscription records. The core only reads them;
the upsert exists for the admin override path.
"""

import logging
from typing import Optional
from uuid import uuid4

from sqlmodel import select

from shyftcut.infrastructure.db.models.base import utcnow
from shyftcut.infrastructure.db.models.subscription import SubscriptionModel
from shyftcut.infrastructure.db.repositories.base_repository import (
    BaseRepository,
    as_uuid,
)
from shyftcut.domain.subscription import Subscription, parse_tier


logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository):
    """Repository for subscription data access."""

    table_name = "subscriptions"

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_user_id(self, user_id: str) -> Optional[Subscription]:
        """
        Get subscription by user ID.

        Args:
            user_id: Authenticated user ID

        Returns:
            Subscription domain model or None when the user never subscribed

        Raises:
            DatabaseError: the store could not be reached
        """
        async with self._unit_of_work("get_by_user_id") as session:
            statement = select(SubscriptionModel).where(
                SubscriptionModel.user_id == as_uuid(user_id)
            )
            result = await session.execute(statement)
            model = result.scalar_one_or_none()

        return self._to_domain(model) if model else None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def upsert(self, subscription: Subscription) -> Subscription:
        """
        Create or update the subscription for ``subscription.user_id``.

        Billing identifiers are only overwritten when provided, so an admin
        tier override keeps the provider linkage intact.
        """
        now = utcnow()
        values = {
            "user_id": as_uuid(subscription.user_id),
            "tier": subscription.tier.value,
            "status": subscription.status,
            "current_period_start": subscription.current_period_start,
            "current_period_end": subscription.current_period_end,
            "polar_customer_id": subscription.polar_customer_id,
            "polar_subscription_id": subscription.polar_subscription_id,
            "created_at": now,
            "updated_at": now,
        }

        async with self._unit_of_work("upsert") as session:
            stmt = self._insert(session, SubscriptionModel).values(
                id=as_uuid(subscription.id) if subscription.id else uuid4(),
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"],
                set_={
                    "tier": stmt.excluded.tier,
                    "status": stmt.excluded.status,
                    "current_period_start": stmt.excluded.current_period_start,
                    "current_period_end": stmt.excluded.current_period_end,
                    "polar_customer_id": (
                        stmt.excluded.polar_customer_id
                        if subscription.polar_customer_id
                        else SubscriptionModel.polar_customer_id
                    ),
                    "polar_subscription_id": (
                        stmt.excluded.polar_subscription_id
                        if subscription.polar_subscription_id
                        else SubscriptionModel.polar_subscription_id
                    ),
                    "updated_at": now,
                },
            )
            await session.execute(stmt)

        logger.info(
            f"Upserted subscription for user {subscription.user_id}: "
            f"tier={subscription.tier.value} status={subscription.status}"
        )
        return await self.get_by_user_id(subscription.user_id)

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=str(model.id),
            user_id=str(model.user_id),
            tier=parse_tier(model.tier),
            status=model.status or "",
            current_period_start=model.current_period_start,
            current_period_end=model.current_period_end,
            polar_customer_id=model.polar_customer_id,
            polar_subscription_id=model.polar_subscription_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
