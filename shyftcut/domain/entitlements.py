"""
Entitlements Domain

The tier feature table and the evaluator that answers "can the user do X"
and "how many remain". Everything here is pure: no I/O, no clock.

Countable entitlements use -1 as the "unlimited" sentinel, matching the
shape clients already consume.
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from shyftcut.domain.subscription import PAID_TIERS, SubscriptionTier
from shyftcut.domain.usage import CounterKind, UsageSnapshot


UNLIMITED = -1

# Applies to every tier, outside the feature table
AVATAR_GENERATIONS_PER_MONTH = 3


class Feature(str, Enum):
    """Entitlement keys of the tier feature table."""
    # Countable
    ROADMAPS_PER_MONTH = "roadmaps_per_month"
    CHAT_QUESTIONS_PER_MONTH = "chat_questions_per_month"
    QUIZZES_PER_MONTH = "quizzes_per_month"
    NOTES_LIMIT = "notes_limit"
    TASKS_LIMIT = "tasks_limit"
    AI_SUGGESTIONS_PER_DAY = "ai_suggestions_per_day"
    # Boolean
    FULL_COURSE_RECOMMENDATIONS = "full_course_recommendations"
    PROGRESS_TRACKING = "progress_tracking"
    CV_ANALYSIS = "cv_analysis"
    JOB_RECOMMENDATIONS = "job_recommendations"

    @property
    def is_countable(self) -> bool:
        return self in FEATURE_COUNTERS


FEATURE_COUNTERS: Mapping[Feature, CounterKind] = MappingProxyType({
    Feature.ROADMAPS_PER_MONTH: CounterKind.ROADMAPS,
    Feature.CHAT_QUESTIONS_PER_MONTH: CounterKind.CHAT_MESSAGES,
    Feature.QUIZZES_PER_MONTH: CounterKind.QUIZZES,
    Feature.NOTES_LIMIT: CounterKind.NOTES,
    Feature.TASKS_LIMIT: CounterKind.TASKS,
    Feature.AI_SUGGESTIONS_PER_DAY: CounterKind.AI_SUGGESTIONS,
})

COUNTER_FEATURES: Mapping[CounterKind, Feature] = MappingProxyType(
    {kind: feature for feature, kind in FEATURE_COUNTERS.items()}
)

COUNTABLE_FEATURES = tuple(FEATURE_COUNTERS)
BOOLEAN_FEATURES = tuple(f for f in Feature if f not in FEATURE_COUNTERS)


class FeatureEntitlements(BaseModel):
    """Per-tier caps (-1 = unlimited) and feature flags."""
    roadmaps_per_month: int = Field(ge=UNLIMITED)
    chat_questions_per_month: int = Field(ge=UNLIMITED)
    quizzes_per_month: int = Field(ge=UNLIMITED)
    notes_limit: int = Field(ge=UNLIMITED)
    tasks_limit: int = Field(ge=UNLIMITED)
    ai_suggestions_per_day: int = Field(ge=UNLIMITED)
    full_course_recommendations: bool
    progress_tracking: bool
    cv_analysis: bool
    job_recommendations: bool

    model_config = ConfigDict(frozen=True)

    def value(self, feature: Feature) -> Union[int, bool]:
        return getattr(self, feature.value)


# =============================================================================
# Tier Feature Table
# =============================================================================

_PAID_ENTITLEMENTS = FeatureEntitlements(
    roadmaps_per_month=UNLIMITED,
    chat_questions_per_month=UNLIMITED,
    quizzes_per_month=UNLIMITED,
    notes_limit=UNLIMITED,
    tasks_limit=UNLIMITED,
    ai_suggestions_per_day=UNLIMITED,
    full_course_recommendations=True,
    progress_tracking=True,
    cv_analysis=True,
    job_recommendations=True,
)

TIER_FEATURES: Mapping[SubscriptionTier, FeatureEntitlements] = MappingProxyType({
    SubscriptionTier.FREE: FeatureEntitlements(
        roadmaps_per_month=1,
        chat_questions_per_month=10,
        quizzes_per_month=3,
        notes_limit=20,
        tasks_limit=30,
        ai_suggestions_per_day=5,
        full_course_recommendations=False,
        progress_tracking=True,
        cv_analysis=False,
        job_recommendations=False,
    ),
    # premium and pro are identical until pro gets its own differentiation
    SubscriptionTier.PREMIUM: _PAID_ENTITLEMENTS,
    SubscriptionTier.PRO: _PAID_ENTITLEMENTS,
})


def get_tier_features(tier: SubscriptionTier) -> FeatureEntitlements:
    """Entitlements for a tier. The table is total over SubscriptionTier."""
    return TIER_FEATURES[tier]


# =============================================================================
# Entitlement Evaluator
# =============================================================================

class EntitlementEvaluator:
    """
    Answers entitlement questions for one user at one moment.

    Built per request from a freshly resolved tier and usage snapshot and
    passed explicitly to whatever needs it. Never cached across requests.
    """

    __slots__ = ("_tier", "_usage", "_features", "_locked")

    def __init__(
        self,
        tier: SubscriptionTier,
        usage: UsageSnapshot,
        features: Optional[FeatureEntitlements] = None,
        *,
        locked: bool = False,
    ):
        self._tier = tier
        self._usage = usage
        self._features = features or get_tier_features(tier)
        self._locked = locked

    @classmethod
    def locked(cls) -> "EntitlementEvaluator":
        """
        Evaluator for a caller whose tier cannot be determined.

        Resolves to free with nothing usable and zero remaining.
        """
        return cls(SubscriptionTier.FREE, UsageSnapshot(), locked=True)

    @property
    def tier(self) -> SubscriptionTier:
        return self._tier

    @property
    def usage(self) -> UsageSnapshot:
        return self._usage

    @property
    def features(self) -> FeatureEntitlements:
        return self._features

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def is_premium(self) -> bool:
        return not self._locked and self._tier in PAID_TIERS

    def _cap(self, feature: Feature) -> int:
        if not feature.is_countable:
            raise ValueError(f"{feature.value} is a boolean feature and has no cap")
        return self._features.value(feature)

    def _used(self, feature: Feature) -> int:
        return self._usage.used(FEATURE_COUNTERS[feature])

    def is_unlimited(self, feature: Feature) -> bool:
        if self._locked:
            self._cap(feature)
            return False
        return self._cap(feature) == UNLIMITED

    def can_use(self, feature: Feature) -> bool:
        if self._locked:
            return False
        if not feature.is_countable:
            return bool(self._features.value(feature))

        cap = self._cap(feature)
        if cap == UNLIMITED:
            return True
        # Sitting exactly at the cap is already over it
        return self._used(feature) < cap

    def remaining(self, feature: Feature) -> int:
        """Remaining allowance, or -1 when unlimited. Never negative otherwise."""
        if self.is_unlimited(feature):
            return UNLIMITED
        if self._locked:
            return 0
        return max(0, self._cap(feature) - self._used(feature))

    # -------------------------------------------------------------------------
    # Avatar generation (cross-tier constant)
    # -------------------------------------------------------------------------

    def can_generate_avatar(self) -> bool:
        if self._locked:
            return False
        return self._usage.avatar_generations_this_month < AVATAR_GENERATIONS_PER_MONTH

    def avatar_generations_remaining(self) -> int:
        if self._locked:
            return 0
        return max(0, AVATAR_GENERATIONS_PER_MONTH - self._usage.avatar_generations_this_month)

    # -------------------------------------------------------------------------
    # Counter-keyed view, used when metering an action
    # -------------------------------------------------------------------------

    def limit_for(self, kind: CounterKind) -> int:
        """Cap that applies to a counter kind (-1 = unlimited)."""
        if kind == CounterKind.AVATAR_GENERATIONS:
            return 0 if self._locked else AVATAR_GENERATIONS_PER_MONTH
        if self._locked:
            return 0
        return self._cap(COUNTER_FEATURES[kind])

    def can_consume(self, kind: CounterKind) -> bool:
        """Whether one more unit of ``kind`` may be consumed right now."""
        if kind == CounterKind.AVATAR_GENERATIONS:
            return self.can_generate_avatar()
        return self.can_use(COUNTER_FEATURES[kind])

    def remaining_for(self, kind: CounterKind) -> int:
        if kind == CounterKind.AVATAR_GENERATIONS:
            return self.avatar_generations_remaining()
        return self.remaining(COUNTER_FEATURES[kind])

    def __repr__(self) -> str:
        return (
            f"EntitlementEvaluator(tier={self._tier.value!r}, "
            f"locked={self._locked}, usage={self._usage!r})"
        )
