"""Job that archives a user's liked posts and their media."""

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from likes_archive.adapters.likes.base import LikesSource
from likes_archive.adapters.likes.twitter import TwitterLikesSource
from likes_archive.db.models import JobModel, UserModel
from likes_archive.db.session import get_session_context
from likes_archive.domain.enums import JobType
from likes_archive.domain.models import (
    DownloadLikesArgs,
    LikesPage,
    OAuthToken,
    Post,
    QueuedJob,
    StoredFile,
)
from likes_archive.jobs.scheduler import JobHandler
from likes_archive.logging import get_logger
from likes_archive.services.content_store import ContentStore
from likes_archive.services.importer import (
    StorageIntegrityError,
    import_transaction,
    upsert_post,
)
from likes_archive.services.sessions import SessionStore
from likes_archive.services.staging import liked_post_ids, promote_likes, stage_likes

logger = get_logger(__name__)

SourceFactory = Callable[[OAuthToken], LikesSource]


def twitter_source_factory(token: OAuthToken) -> LikesSource:
    return TwitterLikesSource(token)


class DownloadLikesJob(JobHandler):
    """Pages through a user's likes, importing each page atomically.

    Each page's posts, staged likes and the job's next pagination token are
    committed together, so a job restarted after any failure resumes at the
    first page it had not committed. Pagination stops early at the first page
    whose posts are all already in the user's ledger. When pagination ends the
    staged likes are promoted into the ledger; a job that stopped between the
    terminal page and promotion is marked exhausted and only promotes.
    """

    job_type = JobType.USER_LIKES_DOWNLOAD

    def __init__(
        self,
        content_store: ContentStore,
        session_store: SessionStore,
        source_factory: SourceFactory = twitter_source_factory,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.content_store = content_store
        self.session_store = session_store
        self.source_factory = source_factory
        self.session_factory = session_factory

    async def run(self, job: QueuedJob) -> None:
        args = DownloadLikesArgs.model_validate(job.args)
        self._ensure_owner(args.user_id)

        pages = 0
        if args.exhausted:
            logger.info("likes_download_promotion_resumed", user_id=args.user_id)
        else:
            token = self.session_store.load(args.session_id)
            source = self.source_factory(token)
            try:
                pages = await self._paginate(job, args, source)
            finally:
                await source.aclose()

        with import_transaction(self.session_factory) as session:
            promoted = promote_likes(session, job.id)

        logger.info("likes_download_finished", user_id=args.user_id, pages=pages, promoted=promoted)

    def _ensure_owner(self, user_id: str) -> None:
        with get_session_context(self.session_factory) as session:
            if session.get(UserModel, user_id) is None:
                raise ValueError(f"User {user_id} must log in before their likes can be downloaded")

    async def _paginate(
        self,
        job: QueuedJob,
        args: DownloadLikesArgs,
        source: LikesSource,
    ) -> int:
        token = source.token
        cursor = args.pagination_token
        if cursor is not None:
            logger.info("likes_download_resumed", user_id=args.user_id, cursor=cursor)

        pages = 0
        while True:
            try:
                page = await source.fetch_liked_posts_page(args.user_id, cursor)
            except BaseException as e:
                logger.warning("likes_page_fetch_failed", cursor=cursor, error=repr(e))
                # The source may have rotated the token before failing
                self._persist_rotated_token(args.session_id, token, source.token)
                raise
            token = self._persist_rotated_token(args.session_id, token, source.token)

            post_ids = [post.id for post in page.posts]
            if post_ids and self._already_archived(args.user_id, post_ids):
                logger.info("likes_download_caught_up", user_id=args.user_id, cursor=cursor)
                self._mark_exhausted(job)
                break

            files = await self._download_media(page.posts)
            self._import_page(job, args.user_id, page, files)
            pages += 1

            logger.info(
                "page_committed",
                user_id=args.user_id,
                posts=len(page.posts),
                media=len(files),
                next_cursor=page.next_cursor,
            )

            cursor = page.next_cursor
            if cursor is None:
                break

        return pages

    def _persist_rotated_token(
        self,
        session_id: str,
        previous: OAuthToken | None,
        current: OAuthToken | None,
    ) -> OAuthToken | None:
        if current == previous:
            return previous
        # save() rejects a missing token, failing the job
        self.session_store.save(session_id, current)
        logger.info("session_token_rotated", session_id=session_id)
        return current

    def _already_archived(self, user_id: str, post_ids: Sequence[str]) -> bool:
        with get_session_context(self.session_factory) as session:
            return liked_post_ids(session, user_id, post_ids) >= set(post_ids)

    async def _download_media(self, posts: Sequence[Post]) -> dict[str, StoredFile]:
        """Fetch every media item of a page, newest post first.

        Returns:
            Stored file for each media key.
        """
        items = [item for post in posts for item in post.media]
        tasks = [
            asyncio.create_task(self.content_store.fetch_or_reuse(item.url)) for item in items
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return {item.media_key: stored for item, stored in zip(items, results)}

    def _import_page(
        self,
        job: QueuedJob,
        user_id: str,
        page: LikesPage,
        files: dict[str, StoredFile],
    ) -> None:
        # The terminal page keeps the last cursor and marks the job exhausted,
        # so a restart before promotion does not crawl from the first page
        progress: dict[str, Any]
        if page.next_cursor is None:
            progress = {"exhausted": True}
        else:
            progress = {"pagination_token": page.next_cursor}

        with import_transaction(self.session_factory) as session:
            for post in page.posts:
                upsert_post(session, post, files)
            stage_likes(session, job.id, user_id, [post.id for post in page.posts])
            self._update_args(session, job, progress)

        job.args = {**job.args, **progress}

    def _mark_exhausted(self, job: QueuedJob) -> None:
        progress = {"exhausted": True}
        with import_transaction(self.session_factory) as session:
            self._update_args(session, job, progress)
        job.args = {**job.args, **progress}

    @staticmethod
    def _update_args(session: Session, job: QueuedJob, progress: dict[str, Any]) -> None:
        row = session.get(JobModel, job.id)
        if row is None:
            raise StorageIntegrityError(f"Job {job.id} no longer exists")
        # Reassign so the JSON column is marked dirty
        row.args = {**row.args, **progress}
