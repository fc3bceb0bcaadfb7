"""
FastAPI application for studyloop.

Provides REST API for:
- Study sessions (start, add more, submit, end)
- Learner progress (due counts, weakest topics)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from studyloop import __version__
from studyloop.api.routers import learner_router, session_router
from studyloop.core.errors import (
    ContentNotFound,
    RepositoryUnavailable,
    SessionClosed,
    SessionCompositionError,
    SessionNotFound,
    StaleScheduleState,
    StudyLoopError,
)
from studyloop.core.logging import configure_logging
from studyloop.db.database import get_engine, init_db
from studyloop.integrations.judge_client import HttpPlanJudge

settings = get_settings()

# Status codes for engine errors that reach the HTTP layer
_ERROR_STATUS: dict[type[StudyLoopError], int] = {
    ContentNotFound: 404,
    SessionNotFound: 404,
    SessionClosed: 409,
    StaleScheduleState: 409,
    RepositoryUnavailable: 503,
    SessionCompositionError: 503,
}


def _check_database_health() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_file)
    logger.info("Starting studyloop service...")
    init_db()
    app.state.judge = HttpPlanJudge.from_settings(settings)
    if app.state.judge is None:
        logger.info("No plan judge configured; plans are graded locally")
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info("Shutting down studyloop service...")
    if app.state.judge is not None:
        app.state.judge.close()


app = FastAPI(
    title="studyloop",
    description="Spaced-repetition study sessions: composition, grading and scheduling.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(StudyLoopError)
async def study_error_handler(request: Request, exc: StudyLoopError) -> JSONResponse:
    """Map engine errors onto HTTP statuses."""
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status,
        content={"error": exc.__class__.__name__, "detail": str(exc)},
    )


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/health", tags=["Health"])
def health_check(request: Request) -> dict[str, Any]:
    """Health check with a database connectivity test."""
    db_status, db_error = _check_database_health()
    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "database": db_status,
            "judge": "configured" if getattr(request.app.state, "judge", None) else "not_configured",
        },
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Routers
# ========================================

app.include_router(session_router.router, prefix="/sessions", tags=["Sessions"])
app.include_router(learner_router.router, prefix="/learners", tags=["Learners"])
