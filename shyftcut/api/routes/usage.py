"""
Usage & Entitlement API Routes

Read endpoints for the gate surface. Usage is never incremented through
HTTP directly; counters move as a side effect of the metered actions.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel, Field

from shyftcut.api.dependencies import CurrentUserId, UsageCounterStoreDep, UsageServiceDep
from shyftcut.domain.entitlements import (
    AVATAR_GENERATIONS_PER_MONTH,
    BOOLEAN_FEATURES,
    COUNTABLE_FEATURES,
    FEATURE_COUNTERS,
    EntitlementEvaluator,
    FeatureEntitlements,
)
from shyftcut.domain.subscription import SubscriptionTier
from shyftcut.domain.usage import CounterKind, UsageSnapshot


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Response DTOs
# =============================================================================

class FeatureAllowance(BaseModel):
    """Gate state of one countable feature."""
    limit: int = Field(description="Cap for the period, -1 when unlimited")
    used: int
    remaining: int = Field(description="Units left, -1 when unlimited")
    unlimited: bool
    can_use: bool


class AvatarAllowance(BaseModel):
    limit: int
    used: int
    remaining: int
    can_generate: bool


class EntitlementsResponse(BaseModel):
    """Everything a client needs to gate features and show upgrade prompts."""
    tier: SubscriptionTier
    is_premium: bool
    features: FeatureEntitlements
    usage: UsageSnapshot
    allowances: dict[str, FeatureAllowance]
    flags: dict[str, bool]
    avatar: AvatarAllowance


class UsageCheckResponse(BaseModel):
    """Eligibility for one more unit of a counter."""
    kind: CounterKind
    allowed: bool
    tier: SubscriptionTier
    limit: int
    used: int
    remaining: int


def _to_entitlements_response(evaluator: EntitlementEvaluator) -> EntitlementsResponse:
    usage = evaluator.usage
    allowances = {
        feature.value: FeatureAllowance(
            limit=evaluator.features.value(feature),
            used=usage.used(FEATURE_COUNTERS[feature]),
            remaining=evaluator.remaining(feature),
            unlimited=evaluator.is_unlimited(feature),
            can_use=evaluator.can_use(feature),
        )
        for feature in COUNTABLE_FEATURES
    }
    flags = {feature.value: evaluator.can_use(feature) for feature in BOOLEAN_FEATURES}

    return EntitlementsResponse(
        tier=evaluator.tier,
        is_premium=evaluator.is_premium,
        features=evaluator.features,
        usage=usage,
        allowances=allowances,
        flags=flags,
        avatar=AvatarAllowance(
            limit=AVATAR_GENERATIONS_PER_MONTH,
            used=usage.avatar_generations_this_month,
            remaining=evaluator.avatar_generations_remaining(),
            can_generate=evaluator.can_generate_avatar(),
        ),
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/usage", response_model=UsageSnapshot)
async def get_usage(
    user_id: CurrentUserId,
    store: UsageCounterStoreDep,
):
    """
    Get the current user's usage counters for the active periods.

    Counters whose period has elapsed report zero.
    """
    return await store.get_snapshot(user_id)


@router.get("/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(
    user_id: CurrentUserId,
    service: UsageServiceDep,
):
    """Get the effective tier with per-feature limits, usage and remaining counts."""
    evaluator = await service.get_evaluator(user_id)
    return _to_entitlements_response(evaluator)


@router.get("/entitlements/check/{kind}", response_model=UsageCheckResponse)
async def check_usage(
    kind: CounterKind,
    user_id: CurrentUserId,
    service: UsageServiceDep,
):
    """
    Check whether one more unit of ``kind`` is allowed right now.

    A refusal is a normal 200 response with ``allowed: false``; the check
    never changes any counter.
    """
    decision = await service.check(user_id, kind)
    return UsageCheckResponse(
        kind=decision.kind,
        allowed=decision.allowed,
        tier=decision.tier,
        limit=decision.limit,
        used=decision.used,
        remaining=decision.remaining,
    )
