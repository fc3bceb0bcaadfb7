"""
Response Classifier.

Turns raw submission telemetry plus the learner's self-report into the
coarse grade the scheduler consumes:

- Quiet for longer than the quiet period without interacting: Hard, timed out
- Display timer ran out while the learner was working: Good
- Otherwise: the learner's own self-report
"""

from __future__ import annotations

from dataclasses import dataclass

from .scheduler import Grade


@dataclass(frozen=True)
class ResponseTelemetry:
    """Interaction signals captured for one submission."""

    response_ms: int
    interacted: bool = True
    timer_elapsed: bool = False
    idle_ms: int | None = None  # Time since the last interaction, if tracked

    @property
    def quiet_ms(self) -> int:
        """How long the learner went without touching the item."""
        if not self.interacted:
            return self.response_ms
        if self.idle_ms is not None:
            return self.idle_ms
        return 0


@dataclass(frozen=True)
class Classification:
    """The grade actually applied to an attempt."""

    grade: Grade
    self_reported: Grade
    timed_out: bool
    reason: str

    @property
    def overridden(self) -> bool:
        return self.grade != self.self_reported


@dataclass
class ClassifierConfig:
    """Configuration for response classification."""

    quiet_period_ms: int = 10_000

    @classmethod
    def from_settings(cls, settings) -> ClassifierConfig:
        return cls(quiet_period_ms=int(settings.quiet_period_seconds * 1000))


class ResponseClassifier:
    """Applies the timeout/interaction policy before grading."""

    def __init__(self, config: ClassifierConfig | None = None):
        self.config = config or ClassifierConfig()

    def classify(self, self_reported: Grade, telemetry: ResponseTelemetry) -> Classification:
        """
        Decide the coarse grade for a submission.

        Args:
            self_reported: Grade the learner picked
            telemetry: Interaction signals for the submission

        Returns:
            Classification with the applied grade and timeout flag
        """
        self_reported = Grade(self_reported)

        if telemetry.quiet_ms > self.config.quiet_period_ms:
            return Classification(
                grade=Grade.HARD,
                self_reported=self_reported,
                timed_out=True,
                reason="quiet_period_exceeded",
            )

        if telemetry.timer_elapsed and telemetry.interacted:
            return Classification(
                grade=Grade.GOOD,
                self_reported=self_reported,
                timed_out=False,
                reason="timer_elapsed_while_active",
            )

        return Classification(
            grade=self_reported,
            self_reported=self_reported,
            timed_out=False,
            reason="self_reported",
        )
