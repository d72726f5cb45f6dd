"""
SQLModel ORM Models for Shyftcut Entitlements

Import models here to register them with SQLModel.metadata.
"""

from shyftcut.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from shyftcut.infrastructure.db.models.subscription import SubscriptionModel
from shyftcut.infrastructure.db.models.usage_counter import (
    UsageCounterModel,
    UsageIncrementKeyModel,
)


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Subscription
    "SubscriptionModel",
    # Usage
    "UsageCounterModel",
    "UsageIncrementKeyModel",
]
