"""
Usage Metering Service

The integration point for action-performing collaborators (roadmap
generator, chat, quizzes, notes/tasks, AI suggestions, avatar generator).

Soft mode (default) is check-then-act: consult the evaluator, run the
action, and only after it succeeded record the usage. Two near-simultaneous
requests can both pass the check; the resulting small overage is accepted.

Strict mode reserves capacity with a conditional increment before the
action runs and reverts the reservation if the action fails. No request can
push a counter past its limit, at the cost of a write before every action.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar
from uuid import uuid4

from shyftcut.config.settings import settings
from shyftcut.domain.entitlements import UNLIMITED, EntitlementEvaluator
from shyftcut.domain.subscription import SubscriptionTier
from shyftcut.domain.usage import CounterKind
from shyftcut.infrastructure.db.repositories.usage_counter_repository import (
    UsageCounterStore,
)
from shyftcut.infrastructure.exceptions import DatabaseError, UsageLimitExceeded
from shyftcut.services.subscription_resolver import SubscriptionResolver


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MeteredResult(Generic[T]):
    """
    Outcome of a metered action.

    ``allowed`` is False when the user is out of allowance; the action was
    not run. ``recorded`` is False only when the usage increment could not be
    persisted after retries (the action itself still succeeded).
    """
    allowed: bool
    kind: CounterKind
    tier: SubscriptionTier
    limit: int
    used: int
    remaining: int
    value: Optional[T] = None
    recorded: bool = False
    duplicate: bool = False

    def raise_for_limit(self) -> None:
        """Raise UsageLimitExceeded when the action was refused."""
        if not self.allowed:
            raise UsageLimitExceeded(
                feature=self.kind.value,
                limit=self.limit,
                used=self.used,
                tier=self.tier.value,
            )


class UsageService:
    """
    Entitlement checks and usage recording for one request.

    Args:
        resolver: Subscription resolver
        store: Usage counter store, the only counter writer
        strict: Reserve capacity before acting (defaults to USAGE_ENFORCEMENT)
    """

    def __init__(
        self,
        resolver: SubscriptionResolver,
        store: UsageCounterStore,
        *,
        strict: Optional[bool] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self._resolver = resolver
        self._store = store
        self._strict = settings.strict_enforcement if strict is None else strict
        self._max_retries = max_retries or settings.max_retries
        self._base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self._max_delay = settings.retry_max_delay if max_delay is None else max_delay

    @property
    def strict(self) -> bool:
        return self._strict

    async def get_evaluator(self, user_id: Optional[str]) -> EntitlementEvaluator:
        """
        Build an evaluator from fresh subscription and usage reads.

        Without an identity the tier cannot be determined and the locked
        evaluator is returned. Storage failures raise DatabaseError.
        """
        if not user_id:
            return EntitlementEvaluator.locked()

        resolved, usage = await asyncio.gather(
            self._resolver.resolve(user_id),
            self._store.get_snapshot(user_id),
        )
        return EntitlementEvaluator(resolved.tier, usage)

    async def check(self, user_id: Optional[str], kind: CounterKind) -> MeteredResult[None]:
        """Read-only eligibility check. Never mutates counters."""
        evaluator = await self.get_evaluator(user_id)
        return self._decision(evaluator, kind, allowed=evaluator.can_consume(kind))

    async def record(
        self,
        user_id: str,
        kind: CounterKind,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Record one unit of usage after the action succeeded.

        Retries with exponential backoff under a single idempotency key, so
        an attempt that committed but timed out is not counted twice. When
        every attempt fails the increment is logged at ERROR with its key for
        replay, and False is returned; the caller still reports success.
        """
        key = idempotency_key or f"{kind.value}:{uuid4()}"
        last_error: Optional[DatabaseError] = None

        for attempt in range(self._max_retries):
            try:
                result = await self._store.increment(user_id, kind, idempotency_key=key)
                return result.applied or result.duplicate
            except DatabaseError as e:
                last_error = e
                if attempt + 1 < self._max_retries:
                    delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                    logger.warning(
                        f"Usage increment {kind.value} for user {user_id} failed. "
                        f"Attempt {attempt + 1}/{self._max_retries}. Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        logger.error(
            f"Dropped usage increment after {self._max_retries} attempts: "
            f"user={user_id} kind={kind.value} idempotency_key={key} error={last_error}"
        )
        return False

    async def release(self, user_id: str, kind: CounterKind) -> int:
        """Give back one unit of a cumulative counter (note/task deleted)."""
        return await self._store.decrement(user_id, kind)

    async def run_metered(
        self,
        user_id: str,
        kind: CounterKind,
        action: Callable[[], Awaitable[T]],
        idempotency_key: Optional[str] = None,
    ) -> MeteredResult[T]:
        """
        Run ``action`` if the user has allowance for ``kind`` and record it.

        If the action raises, the exception propagates and no usage is
        recorded (in strict mode the reservation is reverted).
        """
        evaluator = await self.get_evaluator(user_id)

        if not evaluator.can_consume(kind):
            logger.info(
                f"User {user_id} ({evaluator.tier.value}) is out of {kind.value} allowance"
            )
            return self._decision(evaluator, kind, allowed=False)

        if self._strict and evaluator.limit_for(kind) != UNLIMITED:
            return await self._run_reserved(user_id, kind, action, evaluator, idempotency_key)

        value = await action()
        recorded = await self.record(user_id, kind, idempotency_key)
        return self._decision(evaluator, kind, allowed=True, value=value, recorded=recorded, consumed=True)

    async def _run_reserved(
        self,
        user_id: str,
        kind: CounterKind,
        action: Callable[[], Awaitable[T]],
        evaluator: EntitlementEvaluator,
        idempotency_key: Optional[str],
    ) -> MeteredResult[T]:
        key = idempotency_key or f"{kind.value}:{uuid4()}"
        reservation = await self._store.increment(
            user_id, kind, idempotency_key=key, limit=evaluator.limit_for(kind)
        )

        if reservation.duplicate:
            # This action already holds a reservation; do not run it twice
            return self._decision(evaluator, kind, allowed=True, recorded=True, duplicate=True)

        if reservation.limit_reached:
            logger.info(
                f"User {user_id} lost the race for the last {kind.value} unit"
            )
            return self._decision(evaluator, kind, allowed=False)

        try:
            value = await action()
        except Exception:
            try:
                await self._store.revert(user_id, kind, reservation.period_key, key)
            except DatabaseError as revert_error:
                logger.error(
                    f"Could not revert {kind.value} reservation for user {user_id} "
                    f"(key {key}): {revert_error}"
                )
            raise

        return self._decision(evaluator, kind, allowed=True, value=value, recorded=True, consumed=True)

    @staticmethod
    def _decision(
        evaluator: EntitlementEvaluator,
        kind: CounterKind,
        *,
        allowed: bool,
        value=None,
        recorded: bool = False,
        duplicate: bool = False,
        consumed: bool = False,
    ) -> MeteredResult:
        limit = evaluator.limit_for(kind)
        used = evaluator.usage.used(kind) + (1 if consumed else 0)
        remaining = evaluator.remaining_for(kind)
        if consumed and remaining != UNLIMITED:
            remaining = max(0, remaining - 1)

        return MeteredResult(
            allowed=allowed,
            kind=kind,
            tier=evaluator.tier,
            limit=limit,
            used=used,
            remaining=remaining,
            value=value,
            recorded=recorded,
            duplicate=duplicate,
        )
