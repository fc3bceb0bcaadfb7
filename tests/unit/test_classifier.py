"""
Unit tests for the response classifier (timeout / interaction policy).
"""

import pytest

from studyloop.delivery.classifier import ClassifierConfig, ResponseClassifier, ResponseTelemetry
from studyloop.delivery.scheduler import Grade


@pytest.fixture
def classifier():
    return ResponseClassifier()


class TestResponseClassifier:
    """Test the grade override rules."""

    @pytest.mark.parametrize("reported", [Grade.EASY, Grade.GOOD, Grade.HARD])
    def test_quiet_period_forces_hard(self, classifier, reported):
        telemetry = ResponseTelemetry(response_ms=12_000, interacted=False)
        result = classifier.classify(reported, telemetry)

        assert result.grade == Grade.HARD
        assert result.timed_out
        assert result.self_reported == reported
        assert result.reason == "quiet_period_exceeded"

    def test_quiet_exactly_at_threshold_is_not_a_timeout(self, classifier):
        telemetry = ResponseTelemetry(response_ms=10_000, interacted=False)
        result = classifier.classify(Grade.EASY, telemetry)

        assert result.grade == Grade.EASY
        assert not result.timed_out

    def test_idle_time_counts_even_after_interaction(self, classifier):
        telemetry = ResponseTelemetry(response_ms=40_000, interacted=True, idle_ms=15_000)
        assert classifier.classify(Grade.GOOD, telemetry).timed_out

    def test_no_interaction_ignores_short_idle_time(self, classifier):
        telemetry = ResponseTelemetry(response_ms=30_000, interacted=False, idle_ms=2_000)
        result = classifier.classify(Grade.EASY, telemetry)

        assert result.grade == Grade.HARD
        assert result.timed_out
        assert result.reason == "quiet_period_exceeded"

    def test_timer_elapsed_while_active_is_good(self, classifier):
        telemetry = ResponseTelemetry(response_ms=90_000, interacted=True, timer_elapsed=True)
        result = classifier.classify(Grade.HARD, telemetry)

        assert result.grade == Grade.GOOD
        assert not result.timed_out
        assert result.overridden
        assert result.reason == "timer_elapsed_while_active"

    def test_slow_but_active_keeps_self_report(self, classifier):
        telemetry = ResponseTelemetry(response_ms=60_000, interacted=True)
        result = classifier.classify(Grade.EASY, telemetry)

        assert result.grade == Grade.EASY
        assert not result.overridden
        assert result.reason == "self_reported"

    def test_accepts_plain_int_grade(self, classifier):
        result = classifier.classify(5, ResponseTelemetry(response_ms=1_000))
        assert result.grade is Grade.HARD

    def test_custom_quiet_period(self):
        classifier = ResponseClassifier(ClassifierConfig(quiet_period_ms=2_000))
        telemetry = ResponseTelemetry(response_ms=3_000, interacted=False)
        assert classifier.classify(Grade.GOOD, telemetry).grade == Grade.HARD
