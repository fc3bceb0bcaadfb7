"""
Study session delivery.

Components:
- ScheduleCalculator: Simplified SM-2 with local-calendar intervals
- ResponseClassifier: Timeout/interaction policy ahead of grading
- SessionComposer: Picks and orders the items for a session
- SessionRecorder: Submissions, session bookkeeping and close-out
- StudyRepository: Storage contract the above depend on
"""

from .classifier import Classification, ClassifierConfig, ResponseClassifier, ResponseTelemetry
from .composer import ComposerConfig, SessionComposer, interleave_insights
from .recorder import SessionRecorder, SubmitResult
from .repository import Attempt, LearnerProfile, ScheduledItem, StudyRepository, StudySession
from .scheduler import Grade, ScheduleCalculator, ScheduleConfig, ScheduleState

__all__ = [
    # Scheduling
    "Grade",
    "ScheduleCalculator",
    "ScheduleConfig",
    "ScheduleState",
    # Classification
    "Classification",
    "ClassifierConfig",
    "ResponseClassifier",
    "ResponseTelemetry",
    # Composition
    "ComposerConfig",
    "SessionComposer",
    "interleave_insights",
    # Recording
    "SessionRecorder",
    "SubmitResult",
    # Storage contract
    "Attempt",
    "LearnerProfile",
    "ScheduledItem",
    "StudyRepository",
    "StudySession",
]
