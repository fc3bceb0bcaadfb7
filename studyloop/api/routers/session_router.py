"""
Study session router.

Endpoints for:
- Starting a session and composing its first batch
- "Add more" continuations
- Submitting answers
- Ending a session
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field

from config import get_settings
from studyloop.api.dependencies import get_recorder, get_repository
from studyloop.core.errors import SessionClosed
from studyloop.db.repository import SqlRepository
from studyloop.delivery.classifier import ResponseTelemetry
from studyloop.delivery.recorder import SessionRecorder, SubmitResult
from studyloop.delivery.repository import StudySession
from studyloop.delivery.scheduler import Grade
from studyloop.items.base import Item

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class StartSessionRequest(BaseModel):
    """Request model for starting a session."""

    user_id: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1, description="Topic name or slug")
    size: int | None = Field(None, ge=1, le=50, description="Items per batch (default from settings)")


class AddMoreRequest(BaseModel):
    """Request model for an add-more continuation."""

    size: int | None = Field(None, ge=1, le=50)


class SubmitRequest(BaseModel):
    """Request model for one answer."""

    item_id: str
    payload: dict[str, Any] = Field(default_factory=dict, description="Kind-specific response")
    self_reported: Grade = Field(Grade.GOOD, description="1 = easy, 3 = good, 5 = hard")
    response_ms: int = Field(..., ge=0)
    interacted: bool = True
    timer_elapsed: bool = False
    idle_ms: int | None = Field(None, ge=0)


class ItemOut(BaseModel):
    """An item as shown to the learner (no answer key)."""

    id: str
    topic: str
    kind: str
    difficulty: str
    prompt: dict[str, Any]
    est_seconds: int
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: Item) -> ItemOut:
        return cls(
            id=item.id,
            topic=item.topic,
            kind=item.kind.value,
            difficulty=item.difficulty.value,
            prompt=item.body.prompt.model_dump(),
            est_seconds=item.estimated_seconds,
            tags=list(item.tags),
        )


class SessionOut(BaseModel):
    """Session bookkeeping."""

    id: str
    user_id: str
    topic: str
    planned_size: int
    served_ids: list[str]
    new_item_count: int
    completed_count: int
    started_at: datetime
    ended_at: datetime | None = None
    accuracy: float | None = None
    mean_latency_ms: float | None = None

    @classmethod
    def from_session(cls, session: StudySession) -> SessionOut:
        return cls(
            id=session.id,
            user_id=session.user_id,
            topic=session.topic,
            planned_size=session.planned_size,
            served_ids=session.served_ids,
            new_item_count=session.new_item_count,
            completed_count=session.completed_count,
            started_at=session.started_at,
            ended_at=session.ended_at,
            accuracy=session.accuracy,
            mean_latency_ms=session.mean_latency_ms,
        )


class BatchResponse(BaseModel):
    """A session plus the batch of items just composed for it."""

    session: SessionOut
    items: list[ItemOut]


class SubmitResponse(BaseModel):
    """Outcome of one answer."""

    attempt_id: str
    correct: bool | None
    feedback: dict[str, Any]
    grade: int
    self_reported: int
    timed_out: bool
    reason: str
    next_due: datetime | None = None
    interval_days: int | None = None
    ease: float | None = None

    @classmethod
    def from_result(cls, result: SubmitResult) -> SubmitResponse:
        schedule = result.schedule
        return cls(
            attempt_id=result.attempt_id,
            correct=result.verdict.correct,
            feedback=result.verdict.feedback,
            grade=int(result.classification.grade),
            self_reported=int(result.classification.self_reported),
            timed_out=result.classification.timed_out,
            reason=result.classification.reason,
            next_due=schedule.next_due if schedule else None,
            interval_days=schedule.interval_days if schedule else None,
            ease=round(schedule.ease, 2) if schedule else None,
        )


# ========================================
# Session Endpoints
# ========================================


@router.post("", response_model=BatchResponse, status_code=201, summary="Start a study session")
def start_session(
    request: StartSessionRequest,
    recorder: SessionRecorder = Depends(get_recorder),
) -> BatchResponse:
    """Open a session and return its first batch of items."""
    size = request.size or get_settings().session_size
    logger.info(f"Starting session for {request.user_id} on {request.topic!r} (size={size})")

    session, items = recorder.start_session(request.user_id, request.topic, size)
    return BatchResponse(
        session=SessionOut.from_session(session),
        items=[ItemOut.from_item(item) for item in items],
    )


@router.post("/{session_id}/more", response_model=BatchResponse, summary="Add more items")
def add_more(
    session_id: str,
    request: AddMoreRequest | None = None,
    recorder: SessionRecorder = Depends(get_recorder),
) -> BatchResponse:
    """Compose a continuation batch that never repeats a served item."""
    session, items = recorder.add_more(session_id, request.size if request else None)
    return BatchResponse(
        session=SessionOut.from_session(session),
        items=[ItemOut.from_item(item) for item in items],
    )


@router.post("/{session_id}/submit", response_model=SubmitResponse, summary="Submit an answer")
def submit_answer(
    session_id: str,
    request: SubmitRequest,
    repo: SqlRepository = Depends(get_repository),
    recorder: SessionRecorder = Depends(get_recorder),
) -> SubmitResponse:
    """Grade an answer and reschedule the item."""
    session = repo.get_session(session_id)
    if session.is_closed:
        raise SessionClosed(session_id)

    result = recorder.submit(
        session.user_id,
        request.item_id,
        request.payload,
        ResponseTelemetry(
            response_ms=request.response_ms,
            interacted=request.interacted,
            timer_elapsed=request.timer_elapsed,
            idle_ms=request.idle_ms,
        ),
        self_reported=request.self_reported,
        session_id=session_id,
    )
    return SubmitResponse.from_result(result)


@router.post("/{session_id}/end", response_model=SessionOut, summary="End a study session")
def end_session(
    session_id: str,
    recorder: SessionRecorder = Depends(get_recorder),
) -> SessionOut:
    """Close the session with its accuracy and mean latency."""
    return SessionOut.from_session(recorder.end_session(session_id))
