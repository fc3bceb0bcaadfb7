"""FastAPI dependencies wiring the engine onto a request-scoped DB session."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from config import get_settings
from studyloop.db.database import get_session
from studyloop.db.repository import SqlRepository
from studyloop.delivery.recorder import SessionRecorder
from studyloop.items.plan import PlanJudge


def get_db() -> Generator[Session, None, None]:
    """Database session for one request."""
    yield from get_session()


def get_repository(db: Session = Depends(get_db)) -> SqlRepository:
    return SqlRepository(db, default_timezone=get_settings().default_timezone)


def get_judge(request: Request) -> PlanJudge | None:
    """Plan judge created at startup (None = heuristic grading only)."""
    return getattr(request.app.state, "judge", None)


def get_recorder(
    repo: SqlRepository = Depends(get_repository),
    judge: PlanJudge | None = Depends(get_judge),
) -> SessionRecorder:
    return SessionRecorder.from_settings(repo, get_settings(), judge=judge)
