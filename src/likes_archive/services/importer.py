"""Entity importer.

Upserts posts, authors, media and text annotations. Every write is a
connect-or-create against the entity's natural key, so importing the same
page twice leaves the database unchanged.
"""

import unicodedata
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from likes_archive.db.models import (
    HashtagAnnotationModel,
    HashtagModel,
    MediaModel,
    MentionAnnotationModel,
    PostModel,
    PostSourceModel,
    UrlAnnotationModel,
    UserModel,
)
from likes_archive.db.session import get_session_context
from likes_archive.domain.models import Author, Post, StoredFile
from likes_archive.logging import get_logger

logger = get_logger(__name__)

A = TypeVar("A")


class StorageIntegrityError(Exception):
    """A constraint violation that upsert semantics did not resolve."""

    pass


@contextmanager
def import_transaction(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Open an all-or-nothing transaction for a page of imports.

    Raises:
        StorageIntegrityError: If a unique or foreign key constraint fails.
    """
    try:
        with get_session_context(session_factory) as session:
            yield session
    except IntegrityError as e:
        raise StorageIntegrityError(f"Import violated a database constraint: {e.orig}") from e


def normalize_tag(tag: str) -> str:
    """Normalize hashtag text to its lookup key."""
    return unicodedata.normalize("NFC", tag).lstrip("#")


def upsert_user(session: Session, author: Author) -> UserModel:
    """Connect or create a user by id."""
    user = session.get(UserModel, author.id)
    if user is None:
        user = UserModel(
            id=author.id,
            name=author.name,
            username=author.username,
            created_at=author.created_at,
        )
        session.add(user)
        session.flush()
    return user


def _get_or_create_source(session: Session, name: str) -> PostSourceModel:
    source = session.execute(
        select(PostSourceModel).where(PostSourceModel.name == name)
    ).scalar_one_or_none()
    if source is None:
        source = PostSourceModel(name=name)
        session.add(source)
        session.flush()
    return source


def _get_or_create_hashtag(session: Session, tag: str) -> HashtagModel:
    tag = normalize_tag(tag)
    hashtag = session.execute(
        select(HashtagModel).where(HashtagModel.tag == tag)
    ).scalar_one_or_none()
    if hashtag is None:
        hashtag = HashtagModel(tag=tag)
        session.add(hashtag)
        session.flush()
    return hashtag


def _unique_ranges(annotations: Iterable[A]) -> list[A]:
    """Drop annotations whose [start, end) range was already seen."""
    seen: set[tuple[int, int]] = set()
    unique = []
    for annotation in annotations:
        key = (annotation.start, annotation.end)  # type: ignore[attr-defined]
        if key not in seen:
            seen.add(key)
            unique.append(annotation)
    return unique


def upsert_post(
    session: Session,
    post: Post,
    files: Mapping[str, StoredFile],
) -> PostModel:
    """Import a post with its author, media and annotations.

    A post that already exists is returned untouched, keeping the files its
    media already reference.

    Args:
        session: Database session of the enclosing page transaction.
        post: The post to import.
        files: Downloaded file for each of the post's media keys.

    Returns:
        The post's database record.

    Raises:
        ValueError: If a media item has no downloaded file.
    """
    existing = session.get(PostModel, post.id)
    if existing is not None:
        logger.debug("post_already_imported", post_id=post.id)
        return existing

    author = upsert_user(session, post.author)
    reply_to = upsert_user(session, post.in_reply_to_user) if post.in_reply_to_user else None
    source = _get_or_create_source(session, post.source) if post.source else None

    record = PostModel(
        id=post.id,
        text=post.text,
        created_at=post.created_at,
        author_id=author.id,
        in_reply_to_user_id=reply_to.id if reply_to else None,
        source_id=source.id if source else None,
    )
    session.add(record)
    session.flush()

    for item in post.media:
        stored = files.get(item.media_key)
        if stored is None:
            raise ValueError(f"Media {item.media_key} of post {post.id} has no downloaded file")

        if session.get(MediaModel, item.media_key) is None:
            session.add(
                MediaModel(
                    media_key=item.media_key,
                    type=item.type.value,
                    url=item.url,
                    post_id=post.id,
                    file_id=stored.sha256,
                )
            )

    for hashtag in _unique_ranges(post.hashtags):
        tag = _get_or_create_hashtag(session, hashtag.tag)
        session.add(
            HashtagAnnotationModel(
                post_id=post.id, start=hashtag.start, end=hashtag.end, hashtag_id=tag.id
            )
        )

    for mention in _unique_ranges(post.mentions):
        session.add(
            MentionAnnotationModel(
                post_id=post.id, start=mention.start, end=mention.end, username=mention.username
            )
        )

    for url in _unique_ranges(post.urls):
        session.add(
            UrlAnnotationModel(
                post_id=post.id,
                start=url.start,
                end=url.end,
                url=url.url,
                expanded_url=url.expanded_url,
                display_url=url.display_url,
            )
        )

    session.flush()
    logger.debug(
        "post_imported",
        post_id=post.id,
        media=len(post.media),
        annotations=len(post.annotations),
    )
    return record
