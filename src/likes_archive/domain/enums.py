"""Domain enumerations."""

from enum import StrEnum


class JobType(StrEnum):
    """Types of background jobs."""

    USER_LIKES_DOWNLOAD = "user_likes_download"


class JobStatus(StrEnum):
    """State of an active job.

    Completed jobs are deleted and failed ones wait in the database for the
    next process start, so neither is observable in the scheduler.
    """

    QUEUED = "queued"
    RUNNING = "running"


class MediaType(StrEnum):
    """Types of media attached to a post."""

    PHOTO = "photo"
    VIDEO = "video"
    ANIMATED_GIF = "animated_gif"
