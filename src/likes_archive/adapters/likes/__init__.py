"""Liked-post data source adapters."""

from likes_archive.adapters.likes.base import (
    CredentialExpiredError,
    LikesSource,
    MalformedResponseError,
    RateLimitedError,
    SourceError,
    TransientSourceError,
)
from likes_archive.adapters.likes.stub import StubLikesSource
from likes_archive.adapters.likes.twitter import TwitterLikesSource

__all__ = [
    "CredentialExpiredError",
    "LikesSource",
    "MalformedResponseError",
    "RateLimitedError",
    "SourceError",
    "StubLikesSource",
    "TransientSourceError",
    "TwitterLikesSource",
]
