"""
Subscription API Routes

Read-only view of the caller's subscription record. Records are written by
the billing webhook handler (external) or the admin override.
"""

import logging
from typing import Optional

from fastapi import APIRouter

from shyftcut.api.dependencies import CurrentUserId, SubscriptionResolverDep
from shyftcut.domain.subscription import SubscriptionResponse


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/subscription", response_model=Optional[SubscriptionResponse])
async def get_subscription(
    user_id: CurrentUserId,
    resolver: SubscriptionResolverDep,
):
    """
    Get the current user's subscription record.

    Returns ``null`` when the user never subscribed; clients treat that as
    the free tier. Storage failures surface as 503, never as a default.
    """
    subscription = await resolver.get_record(user_id)

    if subscription is None:
        return None

    return SubscriptionResponse.from_domain(subscription)
