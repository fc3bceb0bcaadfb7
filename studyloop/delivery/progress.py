"""
Learner progress summaries: due counts, weakest topics and study streaks.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from studyloop.content.topics import normalize_topic

from .repository import StudyRepository
from .scheduler import Grade

MAX_GRADE_SCORE = 6  # (6 - grade) * 20: Easy=100, Good=60, Hard=20


@dataclass
class TopicMastery:
    """Average mastery of one topic from last grades."""

    topic: str
    mastery: float
    items: int


def grade_score(grade: Grade) -> float:
    """Map a coarse grade onto a 0-100 mastery scale."""
    return (MAX_GRADE_SCORE - int(grade)) * 20.0


def due_count(repo: StudyRepository, user_id: str, topic: str, now: datetime) -> int:
    """Number of the learner's items on a topic that are due now."""
    return repo.count_due(user_id, normalize_topic(topic), now)


def weakest_topics(repo: StudyRepository, user_id: str, limit: int = 5) -> list[TopicMastery]:
    """
    Topics ranked weakest first.

    Mastery is the mean grade score across the learner's scheduled items
    on the topic; ties break alphabetically.
    """
    scores: dict[str, list[float]] = defaultdict(list)
    for topic, grade in repo.find_last_grades(user_id):
        scores[topic].append(grade_score(grade))

    ranked = [
        TopicMastery(topic=topic, mastery=round(sum(values) / len(values), 1), items=len(values))
        for topic, values in scores.items()
    ]
    ranked.sort(key=lambda m: (m.mastery, m.topic))
    return ranked[:limit]


def next_streak(streak: int, last_active_on: date | None, today: date) -> int:
    """Streak after activity on `today`: same day keeps it, next day extends it, a gap restarts it."""
    if last_active_on is None:
        return 1
    if last_active_on == today:
        return max(streak, 1)
    if last_active_on == today - timedelta(days=1):
        return streak + 1
    return 1
