"""Base interface for liked-post data sources."""

from abc import ABC, abstractmethod
from datetime import datetime

from likes_archive.domain.models import LikesPage, OAuthToken


class SourceError(Exception):
    """Base class for data source failures."""

    pass


class TransientSourceError(SourceError):
    """Network failure or server error; retrying later may succeed."""

    pass


class RateLimitedError(TransientSourceError):
    """The source rejected the request because of its rate limit."""

    def __init__(self, message: str, reset_at: datetime | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class MalformedResponseError(SourceError):
    """The source returned a page missing required fields."""

    pass


class CredentialExpiredError(SourceError):
    """The access token is no longer valid and could not be refreshed."""

    pass


class LikesSource(ABC):
    """Abstract base class for paginated liked-post sources.

    Implementations:
    - TwitterLikesSource: Twitter API v2 liked tweets endpoint
    - StubLikesSource: Serves scripted pages for testing
    """

    @property
    @abstractmethod
    def token(self) -> OAuthToken | None:
        """The current credential.

        Sources may rotate it while fetching; callers compare it after each
        page and persist any change.
        """
        ...

    @abstractmethod
    async def fetch_liked_posts_page(
        self,
        user_id: str,
        cursor: str | None = None,
    ) -> LikesPage:
        """Fetch one page of a user's liked posts, newest first.

        Args:
            user_id: The user whose likes are fetched
            cursor: Pagination token from the previous page, None for the first

        Returns:
            LikesPage whose next_cursor is None on the terminal page

        Raises:
            TransientSourceError: On rate limits, timeouts or server errors
            MalformedResponseError: If the page is missing required fields
            CredentialExpiredError: If the credential cannot be refreshed
        """
        ...

    async def aclose(self) -> None:
        """Release any held connections."""
        return None
