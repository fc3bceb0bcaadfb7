"""
Learner progress router.

Endpoints for due counts and weakest topics.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from studyloop.api.dependencies import get_repository
from studyloop.content.topics import normalize_topic
from studyloop.db.repository import SqlRepository
from studyloop.delivery.progress import due_count, weakest_topics

router = APIRouter()


class DueCountResponse(BaseModel):
    user_id: str
    topic: str
    due: int


class TopicMasteryOut(BaseModel):
    topic: str
    mastery: float
    items: int


@router.get("/{user_id}/due-count", response_model=DueCountResponse, summary="Count due items")
def get_due_count(
    user_id: str,
    topic: str = Query(..., min_length=1, description="Topic name or slug"),
    repo: SqlRepository = Depends(get_repository),
) -> DueCountResponse:
    """Number of the learner's items on a topic that are due now."""
    count = due_count(repo, user_id, topic, datetime.now(timezone.utc))
    return DueCountResponse(user_id=user_id, topic=normalize_topic(topic), due=count)


@router.get("/{user_id}/weakest-topics", response_model=list[TopicMasteryOut], summary="Weakest topics")
def get_weakest_topics(
    user_id: str,
    limit: int = Query(5, ge=1, le=50),
    repo: SqlRepository = Depends(get_repository),
) -> list[TopicMasteryOut]:
    """Topics ranked by mastery, weakest first."""
    return [
        TopicMasteryOut(topic=m.topic, mastery=m.mastery, items=m.items)
        for m in weakest_topics(repo, user_id, limit=limit)
    ]
