"""
Repository contract for the study engine.

The engine reads and writes learner state only through this protocol.
Records here are the storage-neutral shapes passed across it; any store
(SQL, document, in-memory) that honours the contract can back the engine.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import chain
from typing import Any, Protocol

from studyloop.items.base import Item

from .scheduler import Grade, ScheduleState


@dataclass(frozen=True)
class ScheduledItem:
    """An item joined with the learner's schedule state for it."""

    item: Item
    state: ScheduleState


@dataclass
class Attempt:
    """One submission. Append-only."""

    user_id: str
    item_id: str
    grade: Grade  # Grade applied after classification
    self_reported_grade: Grade
    payload: dict[str, Any]
    correct: bool | None
    feedback: dict[str, Any]
    response_ms: int
    timed_out: bool
    created_at: datetime
    session_id: str | None = None
    id: str | None = None


@dataclass
class StudySession:
    """Bookkeeping for one study session."""

    id: str
    user_id: str
    topic: str
    planned_size: int
    started_at: datetime
    served_ids: list[str] = field(default_factory=list)
    new_item_count: int = 0
    completed_count: int = 0
    ended_at: datetime | None = None
    accuracy: float | None = None
    mean_latency_ms: float | None = None

    @property
    def is_closed(self) -> bool:
        return self.ended_at is not None


@dataclass
class LearnerProfile:
    """Per-learner settings and streak."""

    user_id: str
    timezone: str
    streak: int = 0
    last_active_on: date | None = None


class StudyRepository(Protocol):
    """Storage operations required by the composer and recorder."""

    def transaction(self) -> AbstractContextManager[Any]:
        """Scope in which all writes commit together or not at all."""
        ...

    # ----- content -----

    def get_item(self, item_id: str) -> Item:
        """Raises ContentNotFound if the id has no definition."""
        ...

    def find_items_by_topic(
        self,
        topic: str,
        exclude_ids: Iterable[str],
        limit: int,
        order_hint: str | None = None,
        kinds: Iterable[str] | None = None,
    ) -> list[Item]:
        ...

    def find_unseen_items(
        self,
        user_id: str,
        topic: str,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[Item]:
        """Graded items the learner has no schedule state for."""
        ...

    def upsert_items(self, items: Iterable[Item]) -> int:
        ...

    # ----- schedule -----

    def find_due_schedules(
        self,
        user_id: str,
        topic: str,
        as_of: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[ScheduledItem]:
        """Due schedules, soonest due first."""
        ...

    def find_not_yet_due_schedules(
        self,
        user_id: str,
        topic: str,
        as_of: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[ScheduledItem]:
        """Future schedules, soonest due first."""
        ...

    def has_any_schedule(self, user_id: str, topic: str) -> bool:
        ...

    def count_due(self, user_id: str, topic: str, as_of: datetime) -> int:
        ...

    def find_last_grades(self, user_id: str) -> list[tuple[str, Grade]]:
        """(topic, last grade) for every graded schedule state of the learner."""
        ...

    def get_schedule_state(self, user_id: str, item_id: str, for_update: bool = False) -> ScheduleState | None:
        ...

    def upsert_schedule_state(
        self,
        user_id: str,
        item_id: str,
        state: ScheduleState,
        expected_version: int | None = None,
    ) -> ScheduleState:
        """
        Write a schedule state.

        expected_version None means "insert, no row may exist yet"; otherwise
        the stored version must still match. Raises StaleScheduleState when
        another writer got there first.
        """
        ...

    # ----- attempts -----

    def insert_attempt(self, attempt: Attempt) -> str:
        ...

    def find_recent_miss_attempts(
        self,
        user_id: str,
        topic: str,
        since: datetime,
        exclude_ids: Iterable[str],
        limit: int,
    ) -> list[Attempt]:
        """Hard-graded or timed-out attempts, most recent first."""
        ...

    def find_hard_attempt_item_ids(self, user_id: str, topic: str, since: datetime) -> set[str]:
        ...

    def find_attempts_for_items(self, user_id: str, item_ids: Iterable[str], since: datetime) -> list[Attempt]:
        ...

    # ----- sessions -----

    def create_session(self, user_id: str, topic: str, planned_size: int, started_at: datetime) -> StudySession:
        ...

    def get_session(self, session_id: str, for_update: bool = False) -> StudySession:
        """Raises SessionNotFound."""
        ...

    def append_served_ids(self, session_id: str, item_ids: Iterable[str], new_item_count: int = 0) -> list[str]:
        """Merge ids into the session's served list; returns the merged list."""
        ...

    def record_completion(self, session_id: str) -> None:
        ...

    def close_session(
        self,
        session_id: str,
        accuracy: float,
        mean_latency_ms: float,
        ended_at: datetime,
    ) -> StudySession:
        ...

    # ----- learners -----

    def get_learner_profile(self, user_id: str) -> LearnerProfile:
        """Stored profile, or a default one (not persisted) for unknown learners."""
        ...

    def save_learner_profile(self, profile: LearnerProfile) -> None:
        ...


def merge_ids(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Order-preserving union of two id sequences."""
    merged: list[str] = []
    seen: set[str] = set()
    for item_id in chain(existing, new):
        if item_id not in seen:
            seen.add(item_id)
            merged.append(item_id)
    return merged
