"""
Subscription Database Model

SQLModel table for subscription records. Rows are written by the billing
webhook handler or an admin override, never hard-deleted.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from shyftcut.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table, one row per user.

    Maps to the 'subscriptions' table in PostgreSQL.
    """

    __tablename__ = "subscriptions"

    user_id: UUID = Field(unique=True, index=True, nullable=False)

    # Billing provider (Polar) identifiers
    polar_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    polar_subscription_id: Optional[str] = Field(
        default=None, max_length=255, unique=True, index=True
    )

    # Subscription details
    tier: str = Field(default="free", max_length=20)
    status: str = Field(default="active", max_length=20)

    # Billing period dates
    current_period_start: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    current_period_end: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
