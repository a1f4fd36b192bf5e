"""Models package for the study block reminder service."""

# Import base first
from .base import Base, UTCDateTime, utcnow

# Import all model classes so they register on Base.metadata
from .user import User
from .study_block import StudyBlock, TITLE_MAX_LENGTH
from .job_lock import JobLock, EMAIL_REMINDER_JOB

__all__ = [
    "Base",
    "UTCDateTime",
    "utcnow",
    "User",
    "StudyBlock",
    "TITLE_MAX_LENGTH",
    "JobLock",
    "EMAIL_REMINDER_JOB",
]
