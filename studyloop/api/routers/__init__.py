"""API routers for studyloop."""

from studyloop.api.routers import learner_router, session_router

__all__ = [
    "learner_router",
    "session_router",
]
