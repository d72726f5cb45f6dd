"""
Unit tests for UsageService.

Verifies check-then-act ordering, increment failure handling and the strict
reservation path, with the resolver and store mocked.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from shyftcut.domain.subscription import SubscriptionTier
from shyftcut.domain.usage import CounterKind, IncrementResult, UsageSnapshot
from shyftcut.infrastructure.exceptions import DatabaseError, UsageLimitExceeded
from shyftcut.services.subscription_resolver import ResolvedSubscription
from shyftcut.services.usage_service import UsageService


USER_ID = "11111111-2222-3333-4444-555555555555"


@pytest.fixture
def resolver():
    mock = MagicMock()
    mock.resolve = AsyncMock(
        return_value=ResolvedSubscription(record=None, tier=SubscriptionTier.FREE)
    )
    return mock


@pytest.fixture
def store(mock_usage_store):
    mock_usage_store.increment.side_effect = lambda user_id, kind, **kw: IncrementResult(
        kind=kind, period_key="2025-03", applied=True, value=1
    )
    return mock_usage_store


def make_service(resolver, store, **kwargs) -> UsageService:
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("max_delay", 0)
    return UsageService(resolver, store, **kwargs)


# =============================================================================
# Evaluator construction
# =============================================================================

class TestGetEvaluator:

    async def test_missing_identity_is_locked(self, resolver, store):
        evaluator = await make_service(resolver, store).get_evaluator(None)
        assert evaluator.is_locked
        resolver.resolve.assert_not_awaited()
        store.get_snapshot.assert_not_awaited()

    async def test_built_from_fresh_reads(self, resolver, store):
        resolver.resolve.return_value = ResolvedSubscription(record=None, tier=SubscriptionTier.PRO)
        store.get_snapshot.return_value = UsageSnapshot(notes_count=4)

        service = make_service(resolver, store)
        first = await service.get_evaluator(USER_ID)
        second = await service.get_evaluator(USER_ID)

        assert first.tier == SubscriptionTier.PRO
        assert first.usage.notes_count == 4
        assert first is not second
        assert resolver.resolve.await_count == 2

    async def test_storage_failure_is_not_unlimited(self, resolver, store):
        store.get_snapshot.side_effect = DatabaseError("down")
        with pytest.raises(DatabaseError):
            await make_service(resolver, store).get_evaluator(USER_ID)


class TestCheck:

    async def test_check_never_writes(self, resolver, store):
        store.get_snapshot.return_value = UsageSnapshot(chat_messages_this_month=9)
        decision = await make_service(resolver, store).check(USER_ID, CounterKind.CHAT_MESSAGES)

        assert decision.allowed is True
        assert decision.limit == 10
        assert decision.used == 9
        assert decision.remaining == 1
        store.increment.assert_not_awaited()

    async def test_check_refusal(self, resolver, store):
        store.get_snapshot.return_value = UsageSnapshot(roadmaps_created=1)
        decision = await make_service(resolver, store).check(USER_ID, CounterKind.ROADMAPS)

        assert decision.allowed is False
        with pytest.raises(UsageLimitExceeded) as exc_info:
            decision.raise_for_limit()

        payload = exc_info.value.to_dict()
        assert payload["error"] == "UsageLimitExceeded"
        assert payload["details"] == {
            "feature": "roadmaps",
            "limit": 1,
            "used": 1,
            "tier": "free",
            "upgrade_required": True,
        }


# =============================================================================
# Soft mode (check-then-act)
# =============================================================================

class TestRunMeteredSoft:

    async def test_runs_action_then_records(self, resolver, store):
        calls = []

        async def action():
            calls.append("action")
            assert store.increment.await_count == 0
            return "roadmap-1"

        result = await make_service(resolver, store, strict=False).run_metered(
            USER_ID, CounterKind.ROADMAPS, action
        )

        assert calls == ["action"]
        assert result.allowed is True
        assert result.value == "roadmap-1"
        assert result.recorded is True
        assert result.used == 1
        assert result.remaining == 0
        store.increment.assert_awaited_once()
        _, kwargs = store.increment.await_args
        assert kwargs["idempotency_key"].startswith("roadmaps:")
        assert "limit" not in kwargs

    async def test_refused_action_is_not_run(self, resolver, store):
        store.get_snapshot.return_value = UsageSnapshot(quizzes_taken_this_month=3)
        action = AsyncMock()

        result = await make_service(resolver, store).run_metered(USER_ID, CounterKind.QUIZZES, action)

        assert result.allowed is False
        assert result.value is None
        action.assert_not_awaited()
        store.increment.assert_not_awaited()

    async def test_failed_action_is_not_counted(self, resolver, store):
        async def action():
            raise RuntimeError("generator crashed")

        with pytest.raises(RuntimeError):
            await make_service(resolver, store).run_metered(USER_ID, CounterKind.ROADMAPS, action)

        store.increment.assert_not_awaited()

    async def test_premium_unlimited_reports_sentinel(self, resolver, store):
        resolver.resolve.return_value = ResolvedSubscription(record=None, tier=SubscriptionTier.PREMIUM)
        store.get_snapshot.return_value = UsageSnapshot(chat_messages_this_month=500)

        result = await make_service(resolver, store).run_metered(
            USER_ID, CounterKind.CHAT_MESSAGES, AsyncMock(return_value="ok")
        )

        assert result.allowed is True
        assert result.remaining == -1
        assert result.limit == -1


class TestRecord:

    async def test_retries_with_same_key(self, resolver, store):
        ok = IncrementResult(kind=CounterKind.NOTES, period_key="all", applied=True, value=3)
        store.increment.side_effect = [DatabaseError("timeout"), ok]

        recorded = await make_service(resolver, store, max_retries=3).record(
            USER_ID, CounterKind.NOTES
        )

        assert recorded is True
        assert store.increment.await_count == 2
        keys = {call.kwargs["idempotency_key"] for call in store.increment.await_args_list}
        assert len(keys) == 1

    async def test_uses_caller_key(self, resolver, store):
        await make_service(resolver, store).record(USER_ID, CounterKind.TASKS, "task:42")
        assert store.increment.await_args.kwargs["idempotency_key"] == "task:42"

    async def test_duplicate_counts_as_recorded(self, resolver, store):
        store.increment.side_effect = None
        store.increment.return_value = IncrementResult(
            kind=CounterKind.TASKS, period_key="all", applied=False, duplicate=True
        )
        assert await make_service(resolver, store).record(USER_ID, CounterKind.TASKS, "task:42")

    async def test_exhausted_retries_log_error(self, resolver, store, caplog):
        store.increment.side_effect = DatabaseError("down")

        with caplog.at_level(logging.ERROR, logger="shyftcut.services.usage_service"):
            recorded = await make_service(resolver, store, max_retries=3).record(
                USER_ID, CounterKind.CHAT_MESSAGES, "chat:abc"
            )

        assert recorded is False
        assert store.increment.await_count == 3
        assert "chat:abc" in caplog.text
        assert USER_ID in caplog.text

    async def test_action_still_succeeds_when_record_fails(self, resolver, store):
        store.increment.side_effect = DatabaseError("down")

        result = await make_service(resolver, store, max_retries=2).run_metered(
            USER_ID, CounterKind.CHAT_MESSAGES, AsyncMock(return_value="reply")
        )

        assert result.allowed is True
        assert result.value == "reply"
        assert result.recorded is False


class TestRelease:

    async def test_release_decrements(self, resolver, store):
        store.decrement.return_value = 4
        assert await make_service(resolver, store).release(USER_ID, CounterKind.NOTES) == 4
        store.decrement.assert_awaited_once_with(USER_ID, CounterKind.NOTES)


# =============================================================================
# Strict mode (reserve, act, revert on failure)
# =============================================================================

class TestRunMeteredStrict:

    async def test_reserves_before_action(self, resolver, store):
        async def action():
            assert store.increment.await_count == 1
            return "quiz"

        result = await make_service(resolver, store, strict=True).run_metered(
            USER_ID, CounterKind.QUIZZES, action
        )

        assert result.allowed is True
        assert result.recorded is True
        assert store.increment.await_args.kwargs["limit"] == 3

    async def test_lost_race_does_not_run_action(self, resolver, store):
        store.increment.side_effect = None
        store.increment.return_value = IncrementResult(
            kind=CounterKind.ROADMAPS, period_key="2025-03", applied=False, limit_reached=True
        )
        action = AsyncMock()

        result = await make_service(resolver, store, strict=True).run_metered(
            USER_ID, CounterKind.ROADMAPS, action
        )

        assert result.allowed is False
        action.assert_not_awaited()

    async def test_failed_action_reverts_reservation(self, resolver, store):
        async def action():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await make_service(resolver, store, strict=True).run_metered(
                USER_ID, CounterKind.ROADMAPS, action, idempotency_key="roadmap:r1"
            )

        store.revert.assert_awaited_once_with(
            USER_ID, CounterKind.ROADMAPS, "2025-03", "roadmap:r1"
        )

    async def test_duplicate_reservation_skips_action(self, resolver, store):
        store.increment.side_effect = None
        store.increment.return_value = IncrementResult(
            kind=CounterKind.ROADMAPS, period_key="2025-03", applied=False, duplicate=True
        )
        action = AsyncMock()

        result = await make_service(resolver, store, strict=True).run_metered(
            USER_ID, CounterKind.ROADMAPS, action, idempotency_key="roadmap:r1"
        )

        assert result.allowed is True
        assert result.duplicate is True
        action.assert_not_awaited()

    async def test_unlimited_skips_reservation(self, resolver, store):
        resolver.resolve.return_value = ResolvedSubscription(record=None, tier=SubscriptionTier.PREMIUM)

        await make_service(resolver, store, strict=True).run_metered(
            USER_ID, CounterKind.CHAT_MESSAGES, AsyncMock(return_value="ok")
        )

        assert "limit" not in store.increment.await_args.kwargs
