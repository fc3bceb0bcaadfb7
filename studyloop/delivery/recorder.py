"""
Session and Attempt Recorder.

Owns the write side of a study session:
- start_session / add_more: create the session and compose its batches
- submit: classify, evaluate and reschedule one answer atomically
- end_session: compute accuracy and latency, then close the session
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel

from studyloop.content.topics import normalize_topic
from studyloop.core.errors import SessionClosed, StaleScheduleState
from studyloop.items.base import Item, Verdict
from studyloop.items.evaluator import AnswerEvaluator
from studyloop.items.plan import PlanJudge

from .classifier import Classification, ClassifierConfig, ResponseClassifier, ResponseTelemetry
from .composer import ComposerConfig, SessionComposer
from .progress import next_streak
from .repository import Attempt, StudyRepository, StudySession
from .scheduler import (
    UTC,
    Grade,
    ScheduleCalculator,
    ScheduleConfig,
    ScheduleState,
    local_date,
    resolve_timezone,
)


@dataclass
class SubmitResult:
    """Outcome of one submission."""

    attempt_id: str
    verdict: Verdict
    classification: Classification
    schedule: ScheduleState | None  # None for insight items

    @property
    def grade(self) -> Grade:
        return self.classification.grade


def _payload_dict(payload: Any) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump()
    if isinstance(payload, dict):
        return dict(payload)
    return {"raw": payload}


class SessionRecorder:
    """Runs study sessions against a repository."""

    def __init__(
        self,
        repo: StudyRepository,
        composer: SessionComposer,
        classifier: ResponseClassifier | None = None,
        evaluator: AnswerEvaluator | None = None,
        calculator: ScheduleCalculator | None = None,
        clock: Callable[[], datetime] | None = None,
        default_timezone: str = "America/Toronto",
        retry_attempts: int = 3,
    ):
        self.repo = repo
        self.composer = composer
        self.classifier = classifier or ResponseClassifier()
        self.evaluator = evaluator or AnswerEvaluator()
        self.calculator = calculator or ScheduleCalculator()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.default_timezone = default_timezone
        self.retry_attempts = max(1, retry_attempts)

    @classmethod
    def from_settings(
        cls,
        repo: StudyRepository,
        settings,
        judge: PlanJudge | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> SessionRecorder:
        """Wire a recorder and its components from application settings."""
        composer = SessionComposer(
            repo,
            config=ComposerConfig.from_settings(settings),
            rng=rng,
            clock=clock,
            default_timezone=settings.default_timezone,
        )
        return cls(
            repo,
            composer,
            classifier=ResponseClassifier(ClassifierConfig.from_settings(settings)),
            evaluator=AnswerEvaluator(judge=judge, coverage_threshold=settings.plan_coverage_threshold),
            calculator=ScheduleCalculator(ScheduleConfig.from_settings(settings), rng=rng),
            clock=clock,
            default_timezone=settings.default_timezone,
            retry_attempts=settings.submit_retry_attempts,
        )

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def start_session(self, user_id: str, topic: str, size: int) -> tuple[StudySession, list[Item]]:
        """
        Open a session and compose its first batch.

        Returns:
            (session, items) with the served ids already recorded
        """
        topic = normalize_topic(topic)
        with self.repo.transaction():
            session = self.repo.create_session(user_id, topic, size, started_at=self.clock())

        items = self.composer.build_session(user_id, topic, size, session_id=session.id)
        logger.info(f"Started session {session.id} for {user_id}/{topic} with {len(items)} items")
        return self.repo.get_session(session.id), items

    def add_more(self, session_id: str, size: int | None = None) -> tuple[StudySession, list[Item]]:
        """
        Compose a continuation batch, never repeating an already served item.

        Raises:
            SessionNotFound: Unknown session
            SessionClosed: The session has ended
        """
        session = self.repo.get_session(session_id)
        if session.is_closed:
            raise SessionClosed(session_id)

        items = self.composer.build_session(
            session.user_id,
            session.topic,
            size or session.planned_size,
            already_served_ids=session.served_ids,
            add_more=True,
            session_id=session.id,
        )
        return self.repo.get_session(session_id), items

    def end_session(self, session_id: str) -> StudySession:
        """
        Close a session with its accuracy and mean latency.

        Accuracy is the share of graded attempts on served items that were
        Good or better; insight attempts count only towards latency.
        """
        with self.repo.transaction():
            session = self.repo.get_session(session_id, for_update=True)
            if session.is_closed:
                raise SessionClosed(session_id)

            attempts = self.repo.find_attempts_for_items(
                session.user_id,
                session.served_ids,
                since=session.started_at,
            )
            graded = [a for a in attempts if a.correct is not None]
            accuracy = sum(1 for a in graded if a.grade.is_passing) / len(graded) if graded else 0.0
            mean_latency = sum(a.response_ms for a in attempts) / len(attempts) if attempts else 0.0

            closed = self.repo.close_session(session_id, accuracy, mean_latency, ended_at=self.clock())

        logger.info(
            f"Ended session {session_id}: {len(attempts)} attempts, "
            f"accuracy={accuracy:.0%}, mean latency={mean_latency:.0f}ms"
        )
        return closed

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        user_id: str,
        item_id: str,
        payload: Any,
        telemetry: ResponseTelemetry,
        self_reported: Grade = Grade.GOOD,
        session_id: str | None = None,
    ) -> SubmitResult:
        """
        Record one answer.

        Classifier, evaluator and calculator run in that order. The attempt
        insert, schedule upsert, session bookkeeping and streak update commit
        together; a concurrent write to the same schedule row retries the
        whole unit.

        Args:
            user_id: Learner
            item_id: Item answered
            payload: Kind-specific response
            telemetry: Interaction signals for the response
            self_reported: Grade the learner picked
            session_id: Owning session, if any

        Returns:
            SubmitResult with the verdict and the new schedule

        Raises:
            ContentNotFound: Unknown item
            SessionNotFound / SessionClosed: Bad session reference
            StaleScheduleState: Still contended after all retries
        """
        item = self.repo.get_item(item_id)
        if session_id is not None and self.repo.get_session(session_id).is_closed:
            raise SessionClosed(session_id)

        classification = self.classifier.classify(self_reported, telemetry)
        verdict = self.evaluator.evaluate(item, payload)
        now = self.clock()

        attempt_no = 0
        while True:
            attempt_no += 1
            try:
                return self._record(user_id, item, payload, telemetry, classification, verdict, now, session_id)
            except StaleScheduleState:
                if attempt_no >= self.retry_attempts:
                    logger.error(f"Giving up on {user_id}/{item_id} after {attempt_no} conflicting writes")
                    raise
                logger.warning(f"Schedule for {user_id}/{item_id} changed concurrently, retrying ({attempt_no})")

    def _record(
        self,
        user_id: str,
        item: Item,
        payload: Any,
        telemetry: ResponseTelemetry,
        classification: Classification,
        verdict: Verdict,
        now: datetime,
        session_id: str | None,
    ) -> SubmitResult:
        repo = self.repo
        with repo.transaction():
            profile = repo.get_learner_profile(user_id)
            tz = resolve_timezone(profile.timezone, self.default_timezone)

            schedule = None
            if item.is_graded:
                current = repo.get_schedule_state(user_id, item.id, for_update=True)
                updated = self.calculator.advance(
                    current or ScheduleState.initial(now),
                    classification.grade,
                    now,
                    tz,
                )
                schedule = repo.upsert_schedule_state(
                    user_id,
                    item.id,
                    updated,
                    expected_version=current.version if current else None,
                )

            attempt_id = repo.insert_attempt(
                Attempt(
                    user_id=user_id,
                    item_id=item.id,
                    grade=classification.grade,
                    self_reported_grade=classification.self_reported,
                    payload=_payload_dict(payload),
                    correct=verdict.correct,
                    feedback=verdict.feedback,
                    response_ms=telemetry.response_ms,
                    timed_out=classification.timed_out,
                    created_at=now,
                    session_id=session_id,
                )
            )

            if session_id is not None:
                repo.record_completion(session_id)

            today = local_date(now, tz)
            repo.save_learner_profile(
                replace(
                    profile,
                    streak=next_streak(profile.streak, profile.last_active_on, today),
                    last_active_on=today,
                )
            )

        logger.debug(
            f"Recorded attempt {attempt_id}: {user_id}/{item.id} grade={classification.grade.name} "
            f"correct={verdict.correct} ({classification.reason})"
        )
        return SubmitResult(
            attempt_id=attempt_id,
            verdict=verdict,
            classification=classification,
            schedule=schedule,
        )
