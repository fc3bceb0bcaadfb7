"""
Unit tests for the session recorder.
"""

from datetime import datetime, timedelta, timezone

import pytest

from studyloop.core.errors import ContentNotFound, SessionClosed, StaleScheduleState
from studyloop.db.repository import SqlRepository
from studyloop.delivery.classifier import ResponseTelemetry
from studyloop.delivery.composer import SessionComposer
from studyloop.delivery.recorder import SessionRecorder
from studyloop.delivery.scheduler import Grade, ScheduleCalculator

USER = "alice"


def _recorder(repo, rng, clock, **kwargs):
    return SessionRecorder(
        repo,
        SessionComposer(repo, rng=rng, clock=clock),
        calculator=ScheduleCalculator(rng=rng),
        clock=clock,
        **kwargs,
    )


def _attempts(repo, item_id, clock):
    return repo.find_attempts_for_items(USER, [item_id], since=clock() - timedelta(days=30))


@pytest.fixture
def recorder(repo, rng, clock):
    return _recorder(repo, rng, clock)


@pytest.fixture
def topic_items(make_item, seed_items):
    return seed_items(
        [make_item["mcq"](f"tp-{n}") for n in range(5)]
        + [make_item["plan"]("tp-plan"), make_item["insight"]("tp-insight")]
    )


class TestSessionLifecycle:
    """start / add more / end."""

    def test_start_records_served_items(self, recorder, topic_items):
        session, items = recorder.start_session(USER, "two-pointers", 4)

        assert session.topic == "Two Pointers"
        assert session.served_ids == [item.id for item in items]
        assert session.new_item_count == 4
        assert not session.is_closed

    def test_add_more_never_repeats(self, recorder, topic_items):
        session, first = recorder.start_session(USER, "Two Pointers", 3)
        session, more = recorder.add_more(session.id)

        assert more
        assert not {item.id for item in first} & {item.id for item in more}
        assert session.served_ids == [item.id for item in first + more]

    def test_end_computes_accuracy_and_latency(self, recorder, repo, topic_items):
        session, _ = recorder.start_session(USER, "Two Pointers", 7)

        recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=2_000), session_id=session.id)
        recorder.submit(
            USER, "tp-1", {"choice": 0}, ResponseTelemetry(response_ms=4_000),
            self_reported=Grade.HARD, session_id=session.id,
        )
        recorder.submit(USER, "tp-insight", {}, ResponseTelemetry(response_ms=6_000), session_id=session.id)

        closed = recorder.end_session(session.id)

        assert closed.is_closed
        assert closed.completed_count == 3
        assert closed.accuracy == pytest.approx(0.5)
        assert closed.mean_latency_ms == pytest.approx(4_000)

    def test_end_without_attempts(self, recorder, topic_items):
        session, _ = recorder.start_session(USER, "Two Pointers", 3)
        closed = recorder.end_session(session.id)

        assert closed.accuracy == 0.0
        assert closed.mean_latency_ms == 0.0

    def test_closed_session_rejects_everything(self, recorder, topic_items):
        session, _ = recorder.start_session(USER, "Two Pointers", 3)
        recorder.end_session(session.id)

        with pytest.raises(SessionClosed):
            recorder.end_session(session.id)
        with pytest.raises(SessionClosed):
            recorder.add_more(session.id)
        with pytest.raises(SessionClosed):
            recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=1_000), session_id=session.id)


class TestSubmit:
    """Grading, scheduling and bookkeeping for one answer."""

    def test_good_answer_schedules_next_day(self, recorder, repo, clock, topic_items):
        result = recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=3_000))

        assert result.verdict.correct is True
        assert result.grade == Grade.GOOD
        assert result.schedule.interval_days == 1
        # Same Toronto wall-clock time the next day
        assert result.schedule.next_due == datetime(2025, 3, 11, 15, 0, tzinfo=timezone.utc)
        assert repo.get_schedule_state(USER, "tp-0").version == 1

    def test_hard_answer_returns_at_local_midnight(self, recorder, repo, topic_items):
        result = recorder.submit(
            USER, "tp-0", {"choice": 2}, ResponseTelemetry(response_ms=3_000), self_reported=Grade.HARD,
        )

        assert result.verdict.correct is False
        assert result.schedule.repetitions == 0
        assert result.schedule.ease == pytest.approx(2.3)
        assert result.schedule.next_due == datetime(2025, 3, 11, 4, 0, tzinfo=timezone.utc)

    def test_quiet_period_forces_hard(self, recorder, topic_items):
        result = recorder.submit(
            USER, "tp-0", {}, ResponseTelemetry(response_ms=15_000, interacted=False), self_reported=Grade.EASY,
        )

        assert result.classification.timed_out
        assert result.grade == Grade.HARD
        assert result.classification.self_reported == Grade.EASY

    def test_repeat_answers_bump_version(self, recorder, repo, clock, topic_items):
        recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=3_000))
        clock.advance(days=1)
        result = recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=3_000))

        assert result.schedule.repetitions == 2
        assert result.schedule.interval_days == 3
        assert repo.get_schedule_state(USER, "tp-0").version == 2
        assert len(_attempts(repo, "tp-0", clock)) == 2

    def test_insight_is_recorded_but_not_scheduled(self, recorder, repo, clock, topic_items):
        result = recorder.submit(USER, "tp-insight", {}, ResponseTelemetry(response_ms=5_000, interacted=False))

        assert result.schedule is None
        assert result.verdict.correct is None
        assert repo.get_schedule_state(USER, "tp-insight") is None
        assert len(_attempts(repo, "tp-insight", clock)) == 1

    def test_attempt_keeps_payload_and_feedback(self, recorder, repo, clock, topic_items):
        recorder.submit(USER, "tp-plan", {"text": "Sort the array"}, ResponseTelemetry(response_ms=30_000))

        (attempt,) = _attempts(repo, "tp-plan", clock)
        assert attempt.payload == {"text": "Sort the array"}
        assert attempt.correct is False
        assert attempt.feedback["missing"]

    def test_unknown_item(self, recorder, topic_items):
        with pytest.raises(ContentNotFound):
            recorder.submit(USER, "nope", {}, ResponseTelemetry(response_ms=1_000))


class TestStreaks:
    """Daily streak kept on the learner profile."""

    def _answer(self, recorder):
        recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=1_000))

    def test_consecutive_days_extend(self, recorder, repo, clock, topic_items):
        self._answer(recorder)
        self._answer(recorder)
        assert repo.get_learner_profile(USER).streak == 1

        clock.advance(days=1)
        self._answer(recorder)
        assert repo.get_learner_profile(USER).streak == 2

    def test_gap_restarts(self, recorder, repo, clock, topic_items):
        self._answer(recorder)
        clock.advance(days=1)
        self._answer(recorder)
        clock.advance(days=3)
        self._answer(recorder)

        profile = repo.get_learner_profile(USER)
        assert profile.streak == 1
        assert profile.last_active_on == clock().date()


class TestConcurrentWrites:
    """Optimistic retries on the schedule row."""

    class ContendedRepo(SqlRepository):
        def __init__(self, *args, conflicts=1, **kwargs):
            super().__init__(*args, **kwargs)
            self.conflicts = conflicts
            self.calls = 0

        def upsert_schedule_state(self, user_id, item_id, state, expected_version=None):
            self.calls += 1
            if self.calls <= self.conflicts:
                raise StaleScheduleState(user_id, item_id)
            return super().upsert_schedule_state(user_id, item_id, state, expected_version=expected_version)

    def test_retries_after_conflict(self, db_session, rng, clock, topic_items):
        repo = self.ContendedRepo(db_session, conflicts=2)
        recorder = _recorder(repo, rng, clock, retry_attempts=3)

        result = recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=1_000))

        assert result.schedule.version == 1
        assert repo.calls == 3
        assert len(_attempts(repo, "tp-0", clock)) == 1

    def test_gives_up_after_retries(self, db_session, rng, clock, topic_items):
        repo = self.ContendedRepo(db_session, conflicts=10)
        recorder = _recorder(repo, rng, clock, retry_attempts=3)

        with pytest.raises(StaleScheduleState):
            recorder.submit(USER, "tp-0", {"choice": 1}, ResponseTelemetry(response_ms=1_000))

        assert repo.calls == 3
        assert _attempts(repo, "tp-0", clock) == []
        assert repo.get_learner_profile(USER).streak == 0
