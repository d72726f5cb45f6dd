"""
Admin Routes for Subscription Support

Manual subscription override, usage reset and idempotency key cleanup
for support cases.
Protected by API key authentication.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from shyftcut.api.dependencies import (
    SubscriptionRepoDep,
    UsageCounterStoreDep,
    verify_admin_api_key,
)
from shyftcut.domain.subscription import (
    Subscription,
    SubscriptionOverrideRequest,
    SubscriptionResponse,
)
from shyftcut.domain.usage import KeyPurgeResponse, UsageResetRequest, UsageResetResponse
from shyftcut.infrastructure.db.models.base import utcnow
from shyftcut.infrastructure.db.repositories.base_repository import as_uuid


logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)]  # Protect ALL admin routes
)


def _validate_user_id(user_id: str) -> str:
    try:
        return str(as_uuid(user_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid user id: {user_id}"
        )


@router.put("/subscriptions/{user_id}", response_model=SubscriptionResponse)
async def override_subscription(
    user_id: str,
    request: SubscriptionOverrideRequest,
    repo: SubscriptionRepoDep,
):
    """
    Manually set a user's tier and status.

    Billing identifiers already on the record are kept. Webhook events
    arriving later overwrite the override.
    """
    user_id = _validate_user_id(user_id)

    updated = await repo.upsert(
        Subscription(
            user_id=user_id,
            tier=request.tier,
            status=request.status,
            current_period_start=request.current_period_start,
            current_period_end=request.current_period_end,
        )
    )
    logger.info(
        f"Admin override for user {user_id}: tier={request.tier.value} status={request.status}"
    )
    return SubscriptionResponse.from_domain(updated)


@router.post("/usage/{user_id}/reset", response_model=UsageResetResponse)
async def reset_usage(
    user_id: str,
    store: UsageCounterStoreDep,
    request: UsageResetRequest = UsageResetRequest(),
):
    """
    Clear a user's usage counters.

    Resets every counter (all periods) unless ``kinds`` narrows it down.
    """
    user_id = _validate_user_id(user_id)

    deleted = await store.reset(user_id, request.kinds)
    return UsageResetResponse(user_id=user_id, buckets_deleted=deleted)


@router.post("/usage/purge-keys", response_model=KeyPurgeResponse)
async def purge_idempotency_keys(
    store: UsageCounterStoreDep,
    older_than_days: int = Query(default=62, ge=1),
):
    """Drop idempotency keys recorded more than ``older_than_days`` ago."""
    before = utcnow() - timedelta(days=older_than_days)
    deleted = await store.purge_keys(before)
    return KeyPurgeResponse(keys_deleted=deleted, before=before)
