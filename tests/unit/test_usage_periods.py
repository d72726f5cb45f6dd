"""
Unit tests for usage counter bucketing and the usage snapshot contract.
"""

from datetime import datetime, timedelta, timezone

import pytest

from shyftcut.domain.usage import (
    CUMULATIVE_PERIOD_KEY,
    CounterCadence,
    CounterKind,
    UsageSnapshot,
    period_key,
)


UTC = timezone.utc
TOKYO = timezone(timedelta(hours=9))
NEW_YORK = timezone(timedelta(hours=-5))


class TestCadences:

    def test_cadence_assignment(self):
        assert CounterKind.ROADMAPS.cadence == CounterCadence.MONTHLY
        assert CounterKind.CHAT_MESSAGES.cadence == CounterCadence.MONTHLY
        assert CounterKind.QUIZZES.cadence == CounterCadence.MONTHLY
        assert CounterKind.AVATAR_GENERATIONS.cadence == CounterCadence.MONTHLY
        assert CounterKind.AI_SUGGESTIONS.cadence == CounterCadence.DAILY
        assert CounterKind.NOTES.is_cumulative
        assert CounterKind.TASKS.is_cumulative


class TestPeriodKey:

    def test_monthly_key(self):
        now = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
        assert period_key(CounterKind.ROADMAPS, now) == "2025-03"

    def test_daily_key(self):
        now = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
        assert period_key(CounterKind.AI_SUGGESTIONS, now) == "2025-03-15"

    def test_cumulative_key_never_changes(self):
        for now in (datetime(2020, 1, 1, tzinfo=UTC), datetime(2030, 12, 31, tzinfo=UTC)):
            assert period_key(CounterKind.NOTES, now) == CUMULATIVE_PERIOD_KEY

    def test_month_rollover(self):
        before = datetime(2025, 3, 31, 23, 59, 59, tzinfo=UTC)
        after = before + timedelta(seconds=1)
        assert period_key(CounterKind.CHAT_MESSAGES, before) == "2025-03"
        assert period_key(CounterKind.CHAT_MESSAGES, after) == "2025-04"

    def test_year_rollover(self):
        assert period_key(CounterKind.QUIZZES, datetime(2025, 12, 31, 23, 0, tzinfo=UTC)) == "2025-12"
        assert period_key(CounterKind.QUIZZES, datetime(2026, 1, 1, 0, 0, tzinfo=UTC)) == "2026-01"

    def test_timezone_shifts_bucket(self):
        now = datetime(2025, 3, 31, 20, 0, tzinfo=UTC)
        assert period_key(CounterKind.ROADMAPS, now, TOKYO) == "2025-04"
        assert period_key(CounterKind.AI_SUGGESTIONS, now, TOKYO) == "2025-04-01"
        assert period_key(CounterKind.AI_SUGGESTIONS, now, NEW_YORK) == "2025-03-31"

    def test_naive_datetime_is_utc(self):
        naive = datetime(2025, 3, 31, 23, 30)
        assert period_key(CounterKind.AI_SUGGESTIONS, naive) == "2025-03-31"
        assert period_key(CounterKind.AI_SUGGESTIONS, naive, TOKYO) == "2025-04-01"


class TestUsageSnapshot:

    def test_serializes_camel_case(self):
        snapshot = UsageSnapshot(roadmaps_created=1, ai_suggestions_today=4)
        data = snapshot.model_dump(by_alias=True)
        assert data == {
            "roadmapsCreated": 1,
            "chatMessagesThisMonth": 0,
            "quizzesTakenThisMonth": 0,
            "notesCount": 0,
            "tasksCount": 0,
            "aiSuggestionsToday": 4,
            "avatarGenerationsThisMonth": 0,
        }

    def test_accepts_camel_case_input(self):
        snapshot = UsageSnapshot.model_validate({"notesCount": 7})
        assert snapshot.notes_count == 7

    def test_rejects_negative_counts(self):
        with pytest.raises(ValueError):
            UsageSnapshot(tasks_count=-1)

    def test_from_counts(self):
        snapshot = UsageSnapshot.from_counts({
            CounterKind.QUIZZES: 2,
            CounterKind.AVATAR_GENERATIONS: 1,
        })
        assert snapshot.used(CounterKind.QUIZZES) == 2
        assert snapshot.used(CounterKind.AVATAR_GENERATIONS) == 1
        assert snapshot.used(CounterKind.ROADMAPS) == 0
