"""
Usage Counter Store

Authoritative server-side usage counters. This is the only writer of the
``usage_counters`` table: features never keep ad hoc counters of their own.

Every mutation is a single conditional statement evaluated by the database
(``INSERT ... ON CONFLICT DO UPDATE SET used = used + 1``), never a
read-modify-write in Python, so concurrent increments for the same bucket
cannot lose updates.

Period rollover is lazy: a counter's bucket key is derived from the current
time, so once a month (or day) has elapsed the old bucket is no longer read
and the counter reports zero without any scheduled reset.
"""

import logging
from datetime import datetime, tzinfo
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, select, update

from shyftcut.config.settings import settings
from shyftcut.domain.entitlements import UNLIMITED
from shyftcut.domain.usage import (
    CUMULATIVE_PERIOD_KEY,
    CounterKind,
    IncrementResult,
    UsageSnapshot,
    period_key,
)
from shyftcut.infrastructure.db.database import SessionContextFactory
from shyftcut.infrastructure.db.models.base import utcnow
from shyftcut.infrastructure.db.models.usage_counter import (
    UsageCounterModel,
    UsageIncrementKeyModel,
)
from shyftcut.infrastructure.db.repositories.base_repository import (
    BaseRepository,
    as_uuid,
)


logger = logging.getLogger(__name__)

_BUCKET_COLUMNS = ["user_id", "counter_kind", "period_key"]
_KEY_COLUMNS = ["user_id", "counter_kind", "idempotency_key"]


class UsageCounterStore(BaseRepository):
    """
    Per-user, per-period usage counters.

    Args:
        session_context: Transactional session factory (defaults to the app engine)
        tz: Timezone used to cut daily and monthly buckets
        clock: Returns the current instant; injectable for tests
    """

    table_name = "usage_counters"

    def __init__(
        self,
        session_context: Optional[SessionContextFactory] = None,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(session_context)
        self._tz = tz or settings.usage_tzinfo
        self._clock = clock or utcnow

    def current_period_key(self, kind: CounterKind) -> str:
        return period_key(kind, self._clock(), self._tz)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_snapshot(self, user_id: str) -> UsageSnapshot:
        """
        Current-period counters for a user.

        Only buckets matching the current period keys are read; anything
        from an elapsed period counts as zero.
        """
        now = self._clock()
        current_keys = {kind: period_key(kind, now, self._tz) for kind in CounterKind}

        async with self._unit_of_work("get_snapshot") as session:
            stmt = select(
                UsageCounterModel.counter_kind,
                UsageCounterModel.period_key,
                UsageCounterModel.used,
            ).where(
                UsageCounterModel.user_id == as_uuid(user_id),
                UsageCounterModel.period_key.in_(sorted(set(current_keys.values()))),
            )
            rows = (await session.execute(stmt)).all()

        counts = {kind: 0 for kind in CounterKind}
        for row in rows:
            try:
                kind = CounterKind(row.counter_kind)
            except ValueError:
                logger.warning(f"Ignoring unknown counter kind '{row.counter_kind}'")
                continue
            if current_keys[kind] == row.period_key:
                counts[kind] = max(0, row.used)

        return UsageSnapshot.from_counts(counts)

    # =========================================================================
    # Writes
    # =========================================================================

    async def increment(
        self,
        user_id: str,
        kind: CounterKind,
        *,
        idempotency_key: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> IncrementResult:
        """
        Atomically add one to the current bucket of ``kind``.

        Args:
            user_id: User whose counter is incremented
            kind: Counter to increment
            idempotency_key: Unique id of the originating action. An increment
                whose key was already applied is skipped (``duplicate=True``).
            limit: When given (and not -1), the increment only happens while
                ``used < limit``; otherwise ``limit_reached=True`` and nothing
                is written.

        Raises:
            DatabaseError: the store could not be reached
        """
        bucket = self.current_period_key(kind)
        conditional = limit is not None and limit != UNLIMITED

        if conditional and limit <= 0:
            return IncrementResult(kind=kind, period_key=bucket, applied=False, limit_reached=True)

        uid = as_uuid(user_id)
        now = self._clock()

        async with self._unit_of_work("increment") as session:
            if idempotency_key:
                if not kind.is_cumulative:
                    await self._prune_elapsed_keys(session, uid, kind, bucket)

                claim = (
                    self._insert(session, UsageIncrementKeyModel)
                    .values(
                        idempotency_key=idempotency_key,
                        user_id=uid,
                        counter_kind=kind.value,
                        period_key=bucket,
                        created_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=_KEY_COLUMNS)
                    .returning(UsageIncrementKeyModel.idempotency_key)
                )
                if (await session.execute(claim)).scalar_one_or_none() is None:
                    logger.info(
                        f"Skipping duplicate {kind.value} increment for user {user_id} "
                        f"(key {idempotency_key})"
                    )
                    return IncrementResult(
                        kind=kind, period_key=bucket, applied=False, duplicate=True
                    )

            stmt = self._insert(session, UsageCounterModel).values(
                user_id=uid,
                counter_kind=kind.value,
                period_key=bucket,
                used=1,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=_BUCKET_COLUMNS,
                set_={"used": UsageCounterModel.used + 1, "updated_at": now},
                where=(UsageCounterModel.used < limit) if conditional else None,
            ).returning(UsageCounterModel.used)

            value = (await session.execute(stmt)).scalar_one_or_none()

            if value is None:
                # Conditional update matched no row: bucket already at the limit.
                # Also releases the idempotency key claimed above.
                await session.rollback()
                return IncrementResult(
                    kind=kind, period_key=bucket, applied=False, limit_reached=True
                )

        logger.debug(f"Incremented {kind.value}[{bucket}] for user {user_id} to {value}")
        return IncrementResult(kind=kind, period_key=bucket, applied=True, value=value)

    async def decrement(self, user_id: str, kind: CounterKind) -> int:
        """
        Subtract one from a cumulative counter (note or task deleted).

        Floors at zero. Period counters cannot be decremented: deleting a
        roadmap does not give back this month's allowance.
        """
        if not kind.is_cumulative:
            raise ValueError(f"{kind.value} is a {kind.cadence.value} counter and cannot be decremented")
        return await self._decrement_bucket(user_id, kind, CUMULATIVE_PERIOD_KEY, "decrement")

    async def revert(
        self,
        user_id: str,
        kind: CounterKind,
        bucket: str,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """
        Undo a reservation taken by a conditional increment.

        Used when the guarded action failed after capacity was reserved.
        ``bucket`` is the period key returned by that increment, so a
        reservation that straddles a period boundary reverts the right bucket.
        """
        value = await self._decrement_bucket(user_id, kind, bucket, "revert", idempotency_key)
        logger.info(f"Reverted {kind.value}[{bucket}] reservation for user {user_id}")
        return value

    async def _decrement_bucket(
        self,
        user_id: str,
        kind: CounterKind,
        bucket: str,
        operation: str,
        idempotency_key: Optional[str] = None,
    ) -> int:
        uid = as_uuid(user_id)

        async with self._unit_of_work(operation) as session:
            stmt = (
                update(UsageCounterModel)
                .where(
                    UsageCounterModel.user_id == uid,
                    UsageCounterModel.counter_kind == kind.value,
                    UsageCounterModel.period_key == bucket,
                    UsageCounterModel.used > 0,
                )
                .values(used=UsageCounterModel.used - 1, updated_at=utcnow())
                .returning(UsageCounterModel.used)
            )
            value = (await session.execute(stmt)).scalar_one_or_none()

            if idempotency_key:
                await session.execute(
                    delete(UsageIncrementKeyModel).where(
                        UsageIncrementKeyModel.user_id == uid,
                        UsageIncrementKeyModel.counter_kind == kind.value,
                        UsageIncrementKeyModel.idempotency_key == idempotency_key,
                    )
                )

        return value if value is not None else 0

    async def reset(
        self,
        user_id: str,
        kinds: Optional[Iterable[CounterKind]] = None,
    ) -> int:
        """
        Delete a user's counter buckets (all periods).

        The user's recorded idempotency keys for the same counters go too,
        so replayed actions after a reset are counted again.

        Args:
            user_id: User to reset
            kinds: Restrict the reset to these counters; None resets all

        Returns:
            Number of buckets deleted
        """
        uid = as_uuid(user_id)
        kinds = list(kinds) if kinds else None

        async with self._unit_of_work("reset") as session:
            buckets = delete(UsageCounterModel).where(UsageCounterModel.user_id == uid)
            keys = delete(UsageIncrementKeyModel).where(UsageIncrementKeyModel.user_id == uid)
            if kinds:
                values = [k.value for k in kinds]
                buckets = buckets.where(UsageCounterModel.counter_kind.in_(values))
                keys = keys.where(UsageIncrementKeyModel.counter_kind.in_(values))

            result = await session.execute(buckets)
            deleted = result.rowcount or 0
            await session.execute(keys)

        scope = ", ".join(k.value for k in kinds) if kinds else "all counters"
        logger.info(f"Reset {deleted} usage buckets ({scope}) for user {user_id}")
        return deleted

    async def purge_keys(self, before: datetime) -> int:
        """
        Delete idempotency keys recorded before ``before``, for every user.

        Period counters prune their own keys on the next keyed increment;
        this also reaches cumulative counters and users who went quiet.

        Returns:
            Number of keys deleted
        """
        async with self._unit_of_work("purge_keys") as session:
            result = await session.execute(
                delete(UsageIncrementKeyModel).where(UsageIncrementKeyModel.created_at < before)
            )
            deleted = result.rowcount or 0

        logger.info(f"Purged {deleted} idempotency keys recorded before {before.isoformat()}")
        return deleted

    @staticmethod
    async def _prune_elapsed_keys(session, uid, kind: CounterKind, bucket: str) -> None:
        # Keys only guard retries within the period they were recorded in
        await session.execute(
            delete(UsageIncrementKeyModel).where(
                UsageIncrementKeyModel.user_id == uid,
                UsageIncrementKeyModel.counter_kind == kind.value,
                UsageIncrementKeyModel.period_key != bucket,
            )
        )
