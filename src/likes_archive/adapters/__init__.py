"""External service adapters."""

from likes_archive.adapters.likes import LikesSource, StubLikesSource, TwitterLikesSource

__all__ = [
    "LikesSource",
    "StubLikesSource",
    "TwitterLikesSource",
]
