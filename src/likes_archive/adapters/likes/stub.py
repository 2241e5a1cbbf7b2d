"""Stub likes source for testing."""

from collections.abc import Sequence

from likes_archive.adapters.likes.base import LikesSource
from likes_archive.domain.models import LikesPage, OAuthToken
from likes_archive.logging import get_logger

logger = get_logger(__name__)


class StubLikesSource(LikesSource):
    """Serves a fixed sequence of pages.

    Page N is returned for cursor "page-N" (None for the first page) and links
    to "page-N+1" unless it is the last one. An entry may be an exception
    instance, which is raised when that page is requested. `rotate_token_on`
    swaps in `rotated_token` right after the given page index is fetched.
    """

    def __init__(
        self,
        pages: Sequence[LikesPage | Exception],
        token: OAuthToken | None = None,
        rotated_token: OAuthToken | None = None,
        rotate_token_on: int | None = None,
    ) -> None:
        self.pages = list(pages)
        self._token = token
        self.rotated_token = rotated_token
        self.rotate_token_on = rotate_token_on
        self.requested_cursors: list[str | None] = []

    @property
    def token(self) -> OAuthToken | None:
        return self._token

    @staticmethod
    def cursor_for(index: int) -> str:
        return f"page-{index}"

    async def fetch_liked_posts_page(
        self,
        user_id: str,
        cursor: str | None = None,
    ) -> LikesPage:
        """Return the scripted page for the cursor."""
        self.requested_cursors.append(cursor)
        index = 0 if cursor is None else int(cursor.removeprefix("page-"))
        logger.info("stub_fetch_likes_page", user_id=user_id, index=index)

        entry = self.pages[index]
        if isinstance(entry, Exception):
            raise entry

        if self.rotate_token_on == index and self.rotated_token is not None:
            self._token = self.rotated_token

        next_cursor = self.cursor_for(index + 1) if index + 1 < len(self.pages) else None
        return LikesPage(posts=list(entry.posts), next_cursor=next_cursor)
