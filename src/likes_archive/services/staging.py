"""Like staging protocol.

Sources list likes newest first, page after page, while the permanent
`likes` ledger must grow oldest first because its index order is the like
chronology. A job therefore appends every like it sees to `like_staging` in
arrival order and, once pagination is exhausted, replays the staged rows in
reverse into `likes`:

    page 1 (newest): A, B    -> staged as 1:A 2:B
    page 2 (older):  C, D    -> staged as 3:C 4:D
    promotion reads 4:D 3:C 2:B 1:A and appends them to `likes`

Staged rows are written in the same transaction as the page's posts and the
job's cursor, so they are exactly as durable as the page they belong to.
"""

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from likes_archive.db.models import LikeModel, LikeStagingModel
from likes_archive.logging import get_logger

logger = get_logger(__name__)


def stage_likes(
    session: Session,
    job_id: int,
    user_id: str,
    post_ids: Sequence[str],
) -> list[LikeStagingModel]:
    """Append likes to the staging area in the order given (newest first).

    A like already staged by the same job is not staged again.

    Args:
        session: Database session of the enclosing page transaction.
        job_id: The job observing the likes.
        user_id: The user who liked the posts.
        post_ids: Liked post ids in source order.

    Returns:
        The staging rows created, in insertion order.
    """
    already_staged = set(
        session.execute(
            select(LikeStagingModel.post_id).where(
                LikeStagingModel.job_id == job_id,
                LikeStagingModel.user_id == user_id,
                LikeStagingModel.post_id.in_(post_ids),
            )
        ).scalars()
    )

    staged: list[LikeStagingModel] = []
    for post_id in post_ids:
        if post_id in already_staged:
            continue
        already_staged.add(post_id)

        row = LikeStagingModel(user_id=user_id, post_id=post_id, job_id=job_id)
        session.add(row)
        # Flush one row at a time so the autoincrement index follows list order
        session.flush()
        staged.append(row)

    logger.debug("likes_staged", job_id=job_id, user_id=user_id, count=len(staged))
    return staged


def promote_likes(session: Session, job_id: int) -> int:
    """Move a job's staged likes into the permanent ledger.

    Staged rows are replayed newest staging index first, which appends them
    to the ledger oldest like first. Likes already in the ledger are skipped.
    The staged rows are deleted; the caller's transaction makes both steps
    atomic.

    Returns:
        Number of likes added to the ledger.
    """
    staged = session.execute(
        select(LikeStagingModel)
        .where(LikeStagingModel.job_id == job_id)
        .order_by(LikeStagingModel.index.desc())
    ).scalars().all()

    promoted = 0
    for row in staged:
        exists = session.execute(
            select(LikeModel.index).where(
                LikeModel.user_id == row.user_id,
                LikeModel.post_id == row.post_id,
            )
        ).scalar_one_or_none()
        if exists is not None:
            continue

        session.add(LikeModel(user_id=row.user_id, post_id=row.post_id))
        session.flush()
        promoted += 1

    session.execute(delete(LikeStagingModel).where(LikeStagingModel.job_id == job_id))

    logger.info("likes_promoted", job_id=job_id, staged=len(staged), promoted=promoted)
    return promoted


def liked_post_ids(session: Session, user_id: str, post_ids: Sequence[str]) -> set[str]:
    """Return which of the given posts are already in the user's ledger."""
    if not post_ids:
        return set()
    return set(
        session.execute(
            select(LikeModel.post_id).where(
                LikeModel.user_id == user_id,
                LikeModel.post_id.in_(post_ids),
            )
        ).scalars()
    )
