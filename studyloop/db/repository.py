"""
SQLAlchemy implementation of the study repository.

One SqlRepository wraps one Session and acts as a request-scoped unit of
work. Reads may run outside transaction(); every write belongs inside one.
Any SQLAlchemyError surfaces as RepositoryUnavailable.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from functools import wraps
from typing import Any

from loguru import logger
from sqlalchemy import and_, case, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from studyloop.core.errors import (
    ContentNotFound,
    RepositoryUnavailable,
    SessionNotFound,
    StaleScheduleState,
)
from studyloop.delivery.repository import (
    Attempt,
    LearnerProfile,
    ScheduledItem,
    StudySession,
    merge_ids,
)
from studyloop.delivery.scheduler import Grade, ScheduleState
from studyloop.items import ItemKind
from studyloop.items.base import Item

from .models import AttemptRow, ItemRow, LearnerProfileRow, ScheduleStateRow, StudySessionRow

_DIFFICULTY_RANK = case(
    (ItemRow.difficulty == "E", 0),
    (ItemRow.difficulty == "M", 1),
    (ItemRow.difficulty == "H", 2),
    else_=3,
)


def _db_call(func_):
    """Translate driver/ORM failures into RepositoryUnavailable."""
    @wraps(func_)
    def wrapper(*args, **kwargs):
        try:
            return func_(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Repository call {func_.__name__} failed: {e}")
            raise RepositoryUnavailable(f"{func_.__name__} failed: {e.__class__.__name__}") from e
    return wrapper


# =============================================================================
# Row <-> Record Conversion
# =============================================================================


def _to_item(row: ItemRow) -> Item:
    return Item.model_validate({
        "id": row.id,
        "topic": row.topic,
        "body": row.body,
        "difficulty": row.difficulty,
        "slug": row.slug,
        "tags": row.tags or [],
        "est_seconds": row.est_seconds,
    })


def _to_state(row: ScheduleStateRow) -> ScheduleState:
    return ScheduleState(
        ease=row.ease,
        repetitions=row.repetitions,
        interval_days=row.interval_days,
        next_due=row.next_due,
        last_grade=Grade(row.last_grade) if row.last_grade is not None else None,
        version=row.version,
    )


def _to_attempt(row: AttemptRow) -> Attempt:
    return Attempt(
        id=row.id,
        user_id=row.user_id,
        item_id=row.item_id,
        session_id=row.session_id,
        grade=Grade(row.grade),
        self_reported_grade=Grade(row.self_reported_grade),
        payload=row.payload,
        correct=row.correct,
        feedback=row.feedback or {},
        response_ms=row.response_ms,
        timed_out=row.timed_out,
        created_at=row.created_at,
    )


def _to_session(row: StudySessionRow) -> StudySession:
    return StudySession(
        id=row.id,
        user_id=row.user_id,
        topic=row.topic,
        planned_size=row.planned_size,
        started_at=row.started_at,
        served_ids=list(row.served_ids or []),
        new_item_count=row.new_item_count,
        completed_count=row.completed_count,
        ended_at=row.ended_at,
        accuracy=row.accuracy,
        mean_latency_ms=row.mean_latency_ms,
    )


# =============================================================================
# Repository
# =============================================================================


class SqlRepository:
    """StudyRepository backed by a SQLAlchemy session."""

    def __init__(self, session: Session, default_timezone: str = "America/Toronto"):
        self.session = session
        self.default_timezone = default_timezone
        self._depth = 0

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Commit on success, roll back on any error. Nested scopes join the outer one."""
        if self._depth:
            yield self.session
            return

        self._depth += 1
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryUnavailable(f"commit failed: {e.__class__.__name__}") from e
        except BaseException:  # Intentionally broad - cancellation must not leave writes behind
            self.session.rollback()
            raise
        finally:
            self._depth -= 1

    # ----- content -----

    @_db_call
    def get_item(self, item_id: str) -> Item:
        row = self.session.get(ItemRow, item_id)
        if row is None:
            raise ContentNotFound(item_id)
        return _to_item(row)

    @_db_call
    def find_items_by_topic(
        self,
        topic: str,
        exclude_ids: Iterable[str],
        limit: int,
        order_hint: str | None = None,
        kinds: Iterable[str] | None = None,
    ) -> list[Item]:
        stmt = select(ItemRow).where(ItemRow.topic == topic)
        exclude = list(exclude_ids)
        if exclude:
            stmt = stmt.where(ItemRow.id.not_in(exclude))
        if kinds is not None:
            stmt = stmt.where(ItemRow.kind.in_(list(kinds)))

        if order_hint == "difficulty":
            stmt = stmt.order_by(_DIFFICULTY_RANK, ItemRow.id)
        elif order_hint == "random":
            stmt = stmt.order_by(func.random())
        else:
            stmt = stmt.order_by(ItemRow.id)

        rows = self.session.scalars(stmt.limit(limit)).all()
        return [_to_item(row) for row in rows]

    @_db_call
    def find_unseen_items(
        self,
        user_id: str,
        topic: str,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[Item]:
        scheduled = exists().where(
            and_(ScheduleStateRow.item_id == ItemRow.id, ScheduleStateRow.user_id == user_id)
        )
        stmt = select(ItemRow).where(
            ItemRow.topic == topic,
            ItemRow.kind != ItemKind.INSIGHT.value,
            ~scheduled,
        )
        exclude = list(exclude_ids)
        if exclude:
            stmt = stmt.where(ItemRow.id.not_in(exclude))
        stmt = stmt.order_by(_DIFFICULTY_RANK, ItemRow.id).limit(limit)
        return [_to_item(row) for row in self.session.scalars(stmt).all()]

    @_db_call
    def upsert_items(self, items: Iterable[Item]) -> int:
        count = 0
        for item in items:
            self.session.merge(
                ItemRow(
                    id=item.id,
                    slug=item.slug,
                    topic=item.topic,
                    kind=item.kind.value,
                    difficulty=item.difficulty.value,
                    body=item.body.model_dump(mode="json"),
                    tags=list(item.tags),
                    est_seconds=item.est_seconds,
                )
            )
            count += 1
        self.session.flush()
        return count

    # ----- schedule -----

    def _schedules_for(self, user_id: str, topic: str, exclude_ids: Iterable[str]):
        stmt = (
            select(ItemRow, ScheduleStateRow)
            .join(ScheduleStateRow, ScheduleStateRow.item_id == ItemRow.id)
            .where(ScheduleStateRow.user_id == user_id, ItemRow.topic == topic)
        )
        exclude = list(exclude_ids)
        if exclude:
            stmt = stmt.where(ItemRow.id.not_in(exclude))
        return stmt

    @_db_call
    def find_due_schedules(
        self,
        user_id: str,
        topic: str,
        as_of: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[ScheduledItem]:
        stmt = (
            self._schedules_for(user_id, topic, exclude_ids)
            .where(ScheduleStateRow.next_due <= as_of)
            .order_by(ScheduleStateRow.next_due, ItemRow.id)
            .limit(limit)
        )
        return [ScheduledItem(_to_item(item), _to_state(state)) for item, state in self.session.execute(stmt)]

    @_db_call
    def find_not_yet_due_schedules(
        self,
        user_id: str,
        topic: str,
        as_of: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[ScheduledItem]:
        stmt = (
            self._schedules_for(user_id, topic, exclude_ids)
            .where(ScheduleStateRow.next_due > as_of)
            .order_by(ScheduleStateRow.next_due, ItemRow.id)
            .limit(limit)
        )
        return [ScheduledItem(_to_item(item), _to_state(state)) for item, state in self.session.execute(stmt)]

    @_db_call
    def has_any_schedule(self, user_id: str, topic: str) -> bool:
        stmt = select(
            exists()
            .where(ScheduleStateRow.item_id == ItemRow.id)
            .where(ScheduleStateRow.user_id == user_id, ItemRow.topic == topic)
        )
        return bool(self.session.scalar(stmt))

    @_db_call
    def count_due(self, user_id: str, topic: str, as_of: datetime) -> int:
        stmt = (
            select(func.count(ScheduleStateRow.id))
            .join(ItemRow, ItemRow.id == ScheduleStateRow.item_id)
            .where(
                ScheduleStateRow.user_id == user_id,
                ItemRow.topic == topic,
                ScheduleStateRow.next_due <= as_of,
            )
        )
        return int(self.session.scalar(stmt) or 0)

    @_db_call
    def find_last_grades(self, user_id: str) -> list[tuple[str, Grade]]:
        stmt = (
            select(ItemRow.topic, ScheduleStateRow.last_grade)
            .join(ItemRow, ItemRow.id == ScheduleStateRow.item_id)
            .where(ScheduleStateRow.user_id == user_id, ScheduleStateRow.last_grade.is_not(None))
        )
        return [(topic, Grade(grade)) for topic, grade in self.session.execute(stmt)]

    @_db_call
    def get_schedule_state(self, user_id: str, item_id: str, for_update: bool = False) -> ScheduleState | None:
        stmt = select(ScheduleStateRow).where(
            ScheduleStateRow.user_id == user_id,
            ScheduleStateRow.item_id == item_id,
        )
        stmt = stmt.execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.session.scalars(stmt).one_or_none()
        return _to_state(row) if row is not None else None

    @_db_call
    def upsert_schedule_state(
        self,
        user_id: str,
        item_id: str,
        state: ScheduleState,
        expected_version: int | None = None,
    ) -> ScheduleState:
        values: dict[str, Any] = {
            "ease": state.ease,
            "repetitions": state.repetitions,
            "interval_days": state.interval_days,
            "next_due": state.next_due,
            "last_grade": int(state.last_grade) if state.last_grade is not None else None,
        }

        if expected_version is None:
            self.session.add(ScheduleStateRow(user_id=user_id, item_id=item_id, version=1, **values))
            try:
                self.session.flush()
            except IntegrityError as e:
                raise StaleScheduleState(user_id, item_id) from e
            return replace(state, version=1)

        result = self.session.execute(
            update(ScheduleStateRow)
            .where(
                ScheduleStateRow.user_id == user_id,
                ScheduleStateRow.item_id == item_id,
                ScheduleStateRow.version == expected_version,
            )
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StaleScheduleState(user_id, item_id)
        return replace(state, version=expected_version + 1)

    # ----- attempts -----

    @_db_call
    def insert_attempt(self, attempt: Attempt) -> str:
        row = AttemptRow(
            user_id=attempt.user_id,
            item_id=attempt.item_id,
            session_id=attempt.session_id,
            grade=int(attempt.grade),
            self_reported_grade=int(attempt.self_reported_grade),
            payload=attempt.payload,
            correct=attempt.correct,
            feedback=attempt.feedback,
            response_ms=attempt.response_ms,
            timed_out=attempt.timed_out,
            created_at=attempt.created_at,
        )
        if attempt.id is not None:
            row.id = attempt.id
        self.session.add(row)
        self.session.flush()
        return row.id

    @_db_call
    def find_recent_miss_attempts(
        self,
        user_id: str,
        topic: str,
        since: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[Attempt]:
        stmt = (
            select(AttemptRow)
            .join(ItemRow, ItemRow.id == AttemptRow.item_id)
            .where(
                AttemptRow.user_id == user_id,
                ItemRow.topic == topic,
                AttemptRow.created_at >= since,
                (AttemptRow.grade == int(Grade.HARD)) | AttemptRow.timed_out.is_(True),
            )
        )
        exclude = list(exclude_ids)
        if exclude:
            stmt = stmt.where(AttemptRow.item_id.not_in(exclude))
        stmt = stmt.order_by(AttemptRow.created_at.desc()).limit(limit)
        return [_to_attempt(row) for row in self.session.scalars(stmt).all()]

    @_db_call
    def find_hard_attempt_item_ids(self, user_id: str, topic: str, since: datetime) -> set[str]:
        stmt = (
            select(AttemptRow.item_id)
            .join(ItemRow, ItemRow.id == AttemptRow.item_id)
            .where(
                AttemptRow.user_id == user_id,
                ItemRow.topic == topic,
                AttemptRow.grade == int(Grade.HARD),
                AttemptRow.created_at >= since,
            )
            .distinct()
        )
        return set(self.session.scalars(stmt).all())

    @_db_call
    def find_attempts_for_items(self, user_id: str, item_ids: Iterable[str], since: datetime) -> list[Attempt]:
        ids = list(item_ids)
        if not ids:
            return []
        stmt = (
            select(AttemptRow)
            .where(
                AttemptRow.user_id == user_id,
                AttemptRow.item_id.in_(ids),
                AttemptRow.created_at >= since,
            )
            .order_by(AttemptRow.created_at)
        )
        return [_to_attempt(row) for row in self.session.scalars(stmt).all()]

    # ----- sessions -----

    @_db_call
    def create_session(self, user_id: str, topic: str, planned_size: int, started_at: datetime) -> StudySession:
        row = StudySessionRow(
            user_id=user_id,
            topic=topic,
            planned_size=planned_size,
            started_at=started_at,
            served_ids=[],
            new_item_count=0,
            completed_count=0,
        )
        self.session.add(row)
        self.session.flush()
        return _to_session(row)

    def _session_row(self, session_id: str, for_update: bool = False) -> StudySessionRow:
        stmt = select(StudySessionRow).where(StudySessionRow.id == session_id)
        stmt = stmt.execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.session.scalars(stmt).one_or_none()
        if row is None:
            raise SessionNotFound(session_id)
        return row

    @_db_call
    def get_session(self, session_id: str, for_update: bool = False) -> StudySession:
        return _to_session(self._session_row(session_id, for_update))

    @_db_call
    def append_served_ids(self, session_id: str, item_ids: Iterable[str], new_item_count: int = 0) -> list[str]:
        row = self._session_row(session_id, for_update=True)
        merged = merge_ids(row.served_ids or [], item_ids)
        row.served_ids = merged
        row.new_item_count = row.new_item_count + new_item_count
        self.session.flush()
        return list(merged)

    @_db_call
    def record_completion(self, session_id: str) -> None:
        result = self.session.execute(
            update(StudySessionRow)
            .where(StudySessionRow.id == session_id)
            .values(completed_count=StudySessionRow.completed_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SessionNotFound(session_id)

    @_db_call
    def close_session(
        self,
        session_id: str,
        accuracy: float,
        mean_latency_ms: float,
        ended_at: datetime,
    ) -> StudySession:
        row = self._session_row(session_id, for_update=True)
        row.accuracy = accuracy
        row.mean_latency_ms = mean_latency_ms
        row.ended_at = ended_at
        self.session.flush()
        return _to_session(row)

    # ----- learners -----

    @_db_call
    def get_learner_profile(self, user_id: str) -> LearnerProfile:
        row = self.session.get(LearnerProfileRow, user_id)
        if row is None:
            return LearnerProfile(user_id=user_id, timezone=self.default_timezone)
        return LearnerProfile(
            user_id=row.user_id,
            timezone=row.timezone,
            streak=row.streak,
            last_active_on=row.last_active_on,
        )

    @_db_call
    def save_learner_profile(self, profile: LearnerProfile) -> None:
        self.session.merge(
            LearnerProfileRow(
                user_id=profile.user_id,
                timezone=profile.timezone,
                streak=profile.streak,
                last_active_on=profile.last_active_on,
            )
        )
        self.session.flush()
