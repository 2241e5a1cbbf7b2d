"""Domain models - pure Python classes independent of database."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from likes_archive.domain.enums import JobType, MediaType


@dataclass(frozen=True)
class Author:
    """A user account as reported by the data source."""

    id: str
    name: str
    username: str
    created_at: datetime


@dataclass(frozen=True)
class MediaItem:
    """A media attachment with the download URL of its selected variant."""

    media_key: str
    type: MediaType
    url: str


@dataclass(frozen=True)
class HashtagAnnotation:
    """A hashtag occupying the code point range [start, end) of a post's text."""

    start: int
    end: int
    tag: str


@dataclass(frozen=True)
class MentionAnnotation:
    """A mention occupying the code point range [start, end) of a post's text."""

    start: int
    end: int
    username: str


@dataclass(frozen=True)
class UrlAnnotation:
    """A link occupying the code point range [start, end) of a post's text."""

    start: int
    end: int
    url: str
    expanded_url: str | None = None
    display_url: str | None = None


Annotation = HashtagAnnotation | MentionAnnotation | UrlAnnotation


@dataclass
class Post:
    """A liked post with everything needed to import it."""

    id: str
    text: str
    created_at: datetime
    author: Author
    media: list[MediaItem] = field(default_factory=list)
    in_reply_to_user: Author | None = None
    source: str | None = None
    hashtags: list[HashtagAnnotation] = field(default_factory=list)
    mentions: list[MentionAnnotation] = field(default_factory=list)
    urls: list[UrlAnnotation] = field(default_factory=list)

    @property
    def annotations(self) -> list[Annotation]:
        """All annotations, hashtags first, then mentions, then links."""
        return [*self.hashtags, *self.mentions, *self.urls]


@dataclass
class LikesPage:
    """One page of liked posts, newest first.

    A missing next_cursor marks the terminal page.
    """

    posts: list[Post]
    next_cursor: str | None = None


@dataclass(frozen=True)
class StoredFile:
    """A content-addressed file on local storage."""

    sha256: bytes
    size: int
    extension: str
    mime: str
    path: Path

    @property
    def hex_digest(self) -> str:
        return self.sha256.hex()


@dataclass
class QueuedJob:
    """In-memory view of a persisted job."""

    id: int
    type: JobType
    args: dict[str, Any]
    created_at: datetime | None = None


class OAuthToken(BaseModel):
    """OAuth2 credential attached to a session."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    expires_at: int | None = Field(
        default=None, description="Expiry as a Unix timestamp in seconds"
    )

    def expires_within(self, delta: timedelta) -> bool:
        """Whether the access token expires before now + delta."""
        if self.expires_at is None:
            return False
        return datetime.fromtimestamp(self.expires_at, UTC) < datetime.now(UTC) + delta


class DownloadLikesArgs(BaseModel):
    """Serialized arguments of a user_likes_download job."""

    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    pagination_token: str | None = None
    # Set with the terminal page; only promotion is left
    exhausted: bool = False
