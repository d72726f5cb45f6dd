"""
Subscription Domain Models

Domain models for the subscription bounded context: tiers, lifecycle status,
the subscription entity and the single rule that derives the effective tier.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)


class SubscriptionTier(str, Enum):
    """Subscription tier levels."""
    FREE = "free"
    PREMIUM = "premium"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """
    Known subscription lifecycle statuses.

    The billing provider may report other values; they are stored verbatim
    and never count as active.
    """
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    REVOKED = "revoked"
    INCOMPLETE = "incomplete"


PAID_TIERS = frozenset({SubscriptionTier.PREMIUM, SubscriptionTier.PRO})


def parse_tier(value: Optional[str]) -> SubscriptionTier:
    """Parse a stored tier string, mapping anything unknown to free."""
    if value is None:
        return SubscriptionTier.FREE
    try:
        return SubscriptionTier(value)
    except ValueError:
        logger.warning(f"Unknown subscription tier '{value}', treating as free")
        return SubscriptionTier.FREE


# =============================================================================
# Domain Entities
# =============================================================================

class Subscription(BaseModel):
    """Billing-provider-linked subscription record (read-only for the core)."""
    id: Optional[str] = None
    user_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: str = SubscriptionStatus.ACTIVE.value
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    polar_customer_id: Optional[str] = None
    polar_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value


def effective_tier(subscription: Optional[Subscription]) -> SubscriptionTier:
    """
    Derive the tier entitlements are computed from.

    Every entitlement path must go through this function: a missing record or
    any status other than ``active`` resolves to free.
    """
    if subscription is not None and subscription.is_active:
        return subscription.tier
    return SubscriptionTier.FREE


# =============================================================================
# Request/Response DTOs
# =============================================================================

class SubscriptionResponse(BaseModel):
    """Response DTO for ``GET /api/subscription``."""
    tier: SubscriptionTier
    status: str
    effective_tier: SubscriptionTier = Field(
        description="Tier used for entitlements (free unless status is active)"
    )
    is_premium: bool = Field(description="Whether the effective tier is a paid tier")
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    polar_customer_id: Optional[str] = None
    polar_subscription_id: Optional[str] = None

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionResponse":
        tier = effective_tier(subscription)
        return cls(
            tier=subscription.tier,
            status=subscription.status,
            effective_tier=tier,
            is_premium=tier in PAID_TIERS,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            polar_customer_id=subscription.polar_customer_id,
            polar_subscription_id=subscription.polar_subscription_id,
        )


class SubscriptionOverrideRequest(BaseModel):
    """Admin override of a user's subscription record."""
    tier: SubscriptionTier
    status: str = Field(default=SubscriptionStatus.ACTIVE.value, min_length=1, max_length=20)
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
