"""
Usage Domain Models

Counter kinds, their reset cadences, period bucketing and the usage
snapshot served to clients.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CounterCadence(str, Enum):
    """How often a counter starts over."""
    MONTHLY = "monthly"
    DAILY = "daily"
    CUMULATIVE = "cumulative"


class CounterKind(str, Enum):
    """Every action the usage store meters."""
    ROADMAPS = "roadmaps"
    CHAT_MESSAGES = "chat_messages"
    QUIZZES = "quizzes"
    NOTES = "notes"
    TASKS = "tasks"
    AI_SUGGESTIONS = "ai_suggestions"
    AVATAR_GENERATIONS = "avatar_generations"

    @property
    def cadence(self) -> CounterCadence:
        return COUNTER_CADENCES[self]

    @property
    def is_cumulative(self) -> bool:
        return self.cadence == CounterCadence.CUMULATIVE


COUNTER_CADENCES: dict[CounterKind, CounterCadence] = {
    CounterKind.ROADMAPS: CounterCadence.MONTHLY,
    CounterKind.CHAT_MESSAGES: CounterCadence.MONTHLY,
    CounterKind.QUIZZES: CounterCadence.MONTHLY,
    CounterKind.AVATAR_GENERATIONS: CounterCadence.MONTHLY,
    CounterKind.AI_SUGGESTIONS: CounterCadence.DAILY,
    CounterKind.NOTES: CounterCadence.CUMULATIVE,
    CounterKind.TASKS: CounterCadence.CUMULATIVE,
}

# Single bucket for counters that are never time-windowed
CUMULATIVE_PERIOD_KEY = "all"


def period_key(kind: CounterKind, now: datetime, tz: tzinfo = timezone.utc) -> str:
    """
    Bucket key for ``kind`` at instant ``now``.

    Monthly buckets are ``YYYY-MM`` and daily buckets ``YYYY-MM-DD``, both
    taken in ``tz``. A new period simply maps to a new key, so counters from
    an elapsed period are never read again.
    """
    if kind.is_cumulative:
        return CUMULATIVE_PERIOD_KEY

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)

    if kind.cadence == CounterCadence.DAILY:
        return local.strftime("%Y-%m-%d")
    return local.strftime("%Y-%m")


class UsageSnapshot(BaseModel):
    """Current-period counters for one user, served as ``GET /api/usage``."""
    roadmaps_created: int = Field(default=0, ge=0)
    chat_messages_this_month: int = Field(default=0, ge=0)
    quizzes_taken_this_month: int = Field(default=0, ge=0)
    notes_count: int = Field(default=0, ge=0)
    tasks_count: int = Field(default=0, ge=0)
    ai_suggestions_today: int = Field(default=0, ge=0)
    avatar_generations_this_month: int = Field(default=0, ge=0)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def used(self, kind: CounterKind) -> int:
        return getattr(self, SNAPSHOT_FIELDS[kind])

    @classmethod
    def from_counts(cls, counts: dict[CounterKind, int]) -> "UsageSnapshot":
        return cls(**{SNAPSHOT_FIELDS[kind]: value for kind, value in counts.items()})


SNAPSHOT_FIELDS: dict[CounterKind, str] = {
    CounterKind.ROADMAPS: "roadmaps_created",
    CounterKind.CHAT_MESSAGES: "chat_messages_this_month",
    CounterKind.QUIZZES: "quizzes_taken_this_month",
    CounterKind.NOTES: "notes_count",
    CounterKind.TASKS: "tasks_count",
    CounterKind.AI_SUGGESTIONS: "ai_suggestions_today",
    CounterKind.AVATAR_GENERATIONS: "avatar_generations_this_month",
}


@dataclass(frozen=True)
class IncrementResult:
    """Outcome of a single store increment."""
    kind: CounterKind
    period_key: str
    applied: bool
    value: Optional[int] = None
    duplicate: bool = False
    limit_reached: bool = False


class UsageResetRequest(BaseModel):
    """Admin request to clear counters; no kinds means every counter."""
    kinds: Optional[list[CounterKind]] = None


class UsageResetResponse(BaseModel):
    user_id: str
    buckets_deleted: int


class KeyPurgeResponse(BaseModel):
    keys_deleted: int
    before: datetime
