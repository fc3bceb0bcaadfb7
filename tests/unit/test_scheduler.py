"""
Unit tests for the schedule calculator and local-calendar helpers.
"""

import random
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from studyloop.delivery.scheduler import (
    Grade,
    ScheduleCalculator,
    ScheduleConfig,
    ScheduleState,
    add_local_days,
    resolve_timezone,
    start_of_local_day,
)

TORONTO = ZoneInfo("America/Toronto")
NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def calculator():
    """Calculator without jitter so intervals are exact."""
    return ScheduleCalculator(ScheduleConfig(jitter=0.0))


def _run(calculator, grades, now=NOW, state=None):
    state = state or ScheduleState.initial(now)
    intervals = []
    for grade in grades:
        state = calculator.advance(state, grade, now, TORONTO)
        intervals.append(state.interval_days)
    return state, intervals


class TestHard:
    """Hard/confusing grades."""

    @pytest.mark.parametrize("ease", [2.5, 1.45, 1.3, 1.0])
    def test_resets_and_lowers_ease(self, calculator, ease):
        state = ScheduleState(ease=ease, repetitions=4, interval_days=20, next_due=NOW)
        result = calculator.advance(state, Grade.HARD, NOW, TORONTO)

        assert result.repetitions == 0
        assert result.interval_days == 1
        assert result.ease == pytest.approx(max(1.3, max(1.3, ease) - 0.2))
        assert result.last_grade == Grade.HARD

    def test_due_at_start_of_next_local_day(self, calculator):
        state = ScheduleState.initial(NOW)
        result = calculator.advance(state, Grade.HARD, NOW, TORONTO)

        assert result.next_due.astimezone(TORONTO) == datetime(2025, 3, 11, 0, 0, tzinfo=TORONTO)

    def test_just_before_midnight_is_not_now_plus_24h(self, calculator):
        # 23:58 local on March 10 is 03:58 UTC on March 11
        late = datetime(2025, 3, 11, 3, 58, tzinfo=timezone.utc)
        result = calculator.advance(ScheduleState.initial(late), Grade.HARD, late, TORONTO)

        assert result.next_due == datetime(2025, 3, 11, 4, 0, tzinfo=timezone.utc)
        assert (result.next_due - late).total_seconds() == 120

    def test_keeps_version(self, calculator):
        state = ScheduleState(version=7)
        assert calculator.advance(state, Grade.HARD, NOW, TORONTO).version == 7


class TestGoodAndEasy:
    """Good and Easy progressions."""

    def test_good_sequence(self, calculator):
        state, intervals = _run(calculator, [Grade.GOOD, Grade.GOOD, Grade.GOOD])

        assert intervals == [1, 3, 8]  # round(3 * 2.5) rounds 7.5 up
        assert state.repetitions == 3
        assert state.ease == pytest.approx(2.5)

    def test_easy_sequence(self, calculator):
        state, intervals = _run(calculator, [Grade.EASY, Grade.EASY, Grade.EASY])

        assert intervals[:2] == [3, 6]
        assert intervals[2] == round(6 * 2.8 * 1.3)
        assert state.ease == pytest.approx(2.8)

    def test_good_after_hard_restarts_steps(self, calculator):
        _, intervals = _run(calculator, [Grade.GOOD, Grade.GOOD, Grade.HARD, Grade.GOOD, Grade.GOOD])
        assert intervals == [1, 3, 1, 1, 3]

    def test_interval_clamped_to_max(self, calculator):
        state = ScheduleState(ease=2.5, repetitions=6, interval_days=300, next_due=NOW)
        result = calculator.advance(state, Grade.GOOD, NOW, TORONTO)
        assert result.interval_days == 365

    def test_jitter_stays_within_ten_percent(self):
        calculator = ScheduleCalculator(rng=random.Random(7))
        for _ in range(200):
            _, intervals = _run(calculator, [Grade.GOOD, Grade.GOOD, Grade.GOOD])
            assert intervals[:2] == [1, 3]
            assert 7 <= intervals[2] <= 9

    def test_next_due_keeps_local_time_across_dst(self, calculator):
        # Saturday 10:00 EST; clocks spring forward overnight
        saturday = datetime(2025, 3, 8, 15, 0, tzinfo=timezone.utc)
        result = calculator.advance(ScheduleState.initial(saturday), Grade.GOOD, saturday, TORONTO)

        assert result.next_due == datetime(2025, 3, 9, 14, 0, tzinfo=timezone.utc)
        assert result.next_due.astimezone(TORONTO).hour == 10

    def test_pure_for_same_input(self, calculator):
        state = ScheduleState(ease=2.1, repetitions=2, interval_days=3, next_due=NOW)
        assert calculator.advance(state, Grade.GOOD, NOW, TORONTO) == calculator.advance(
            state, Grade.GOOD, NOW, TORONTO
        )


class TestHelpers:
    """Timezone helpers and grade properties."""

    def test_passing_grades(self):
        assert Grade.EASY.is_passing
        assert Grade.GOOD.is_passing
        assert not Grade.HARD.is_passing

    def test_start_of_local_day(self):
        assert start_of_local_day(NOW, TORONTO) == datetime(2025, 3, 10, 4, 0, tzinfo=timezone.utc)

    def test_add_local_days_naive_input_is_utc(self):
        naive = datetime(2025, 3, 10, 15, 0)
        assert add_local_days(naive, 2, timezone.utc) == datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)

    def test_unknown_timezone_falls_back(self):
        assert resolve_timezone("Not/A_Zone") == TORONTO

    def test_unknown_timezone_and_fallback_is_utc(self):
        assert resolve_timezone("Not/A_Zone", fallback="Also/Missing") == timezone.utc

    def test_initial_state_is_due(self):
        state = ScheduleState.initial(NOW)
        assert state.is_due(NOW)
        assert state.days_overdue(NOW) == 0
