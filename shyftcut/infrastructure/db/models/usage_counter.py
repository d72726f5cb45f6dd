"""
Usage Counter Database Models

One row per (user, counter kind, period bucket). Rolling over to a new
period means writing a new bucket; elapsed buckets are simply no longer read.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

from shyftcut.infrastructure.db.models.base import utcnow


class UsageCounterModel(SQLModel, table=True):
    """Per-period usage counter bucket."""

    __tablename__ = "usage_counters"
    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_usage_counters_used_non_negative"),
    )

    user_id: UUID = Field(primary_key=True)
    counter_kind: str = Field(primary_key=True, max_length=32)
    period_key: str = Field(primary_key=True, max_length=16)
    used: int = Field(default=0, nullable=False)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False
    )


class UsageIncrementKeyModel(SQLModel, table=True):
    """
    Idempotency keys of applied increments.

    Keys are scoped to one user and counter: a retried increment carrying an
    already-recorded key for the same (user, counter) is not counted again.
    Rows are pruned once their period has elapsed.
    """

    __tablename__ = "usage_increment_keys"

    user_id: UUID = Field(primary_key=True)
    counter_kind: str = Field(primary_key=True, max_length=32)
    idempotency_key: str = Field(primary_key=True, max_length=128)
    period_key: str = Field(max_length=16, nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False
    )
