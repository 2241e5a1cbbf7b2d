"""Domain models and enumerations."""

from likes_archive.domain.enums import JobStatus, JobType, MediaType
from likes_archive.domain.models import (
    Annotation,
    Author,
    DownloadLikesArgs,
    HashtagAnnotation,
    LikesPage,
    MediaItem,
    MentionAnnotation,
    OAuthToken,
    Post,
    QueuedJob,
    StoredFile,
    UrlAnnotation,
)

__all__ = [
    # Enums
    "JobStatus",
    "JobType",
    "MediaType",
    # Models
    "Annotation",
    "Author",
    "DownloadLikesArgs",
    "HashtagAnnotation",
    "LikesPage",
    "MediaItem",
    "MentionAnnotation",
    "OAuthToken",
    "Post",
    "QueuedJob",
    "StoredFile",
    "UrlAnnotation",
]
