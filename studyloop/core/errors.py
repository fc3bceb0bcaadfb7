"""
Exception taxonomy for the study engine.

Pure components (calculator, evaluators, classifier) never raise these for
ordinary input; only the composer, recorder and repository do.
"""

from __future__ import annotations


class StudyLoopError(Exception):
    """Base class for all engine errors."""


class ContentNotFound(StudyLoopError):
    """A referenced item id has no definition in the content store."""

    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class RepositoryUnavailable(StudyLoopError):
    """The persistent store failed or timed out."""


class SessionCompositionError(StudyLoopError):
    """A session could not be built because a candidate pool fetch failed."""


class ExternalJudgeUnavailable(StudyLoopError):
    """The plan judge could not produce a verdict."""


class MalformedPayload(StudyLoopError):
    """A submitted response does not match the item's kind."""


class StaleScheduleState(StudyLoopError):
    """Another submission updated the same schedule row first."""

    def __init__(self, user_id: str, item_id: str):
        super().__init__(f"Schedule state for {user_id}/{item_id} changed concurrently")
        self.user_id = user_id
        self.item_id = item_id


class SessionNotFound(StudyLoopError):
    """No study session with the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionClosed(StudyLoopError):
    """The study session has already ended."""

    def __init__(self, session_id: str):
        super().__init__(f"Session already ended: {session_id}")
        self.session_id = session_id
