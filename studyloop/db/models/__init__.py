# SQLAlchemy models
from .base import Base, UTCDateTime
from .study import (
    AttemptRow,
    ItemRow,
    LearnerProfileRow,
    ScheduleStateRow,
    StudySessionRow,
)

__all__ = [
    # Base
    "Base",
    "UTCDateTime",
    # Study engine
    "AttemptRow",
    "ItemRow",
    "LearnerProfileRow",
    "ScheduleStateRow",
    "StudySessionRow",
]
