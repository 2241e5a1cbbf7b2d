"""SQLAlchemy ORM models."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Scheduler
# =============================================================================


class JobModel(Base):
    """Durable, resumable unit of work."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    args: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    staged_likes: Mapped[list["LikeStagingModel"]] = relationship(
        "LikeStagingModel", back_populates="job"
    )


# =============================================================================
# Posts and authors
# =============================================================================


class UserModel(Base):
    """Account on the data source (post authors and archive owners)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PostSourceModel(Base):
    """Application a post was written with."""

    __tablename__ = "post_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class PostModel(Base):
    """Liked post ORM model."""

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    author_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    in_reply_to_user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    source_id: Mapped[int | None] = mapped_column(
        ForeignKey("post_sources.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    author: Mapped["UserModel"] = relationship("UserModel", foreign_keys=[author_id])
    in_reply_to_user: Mapped["UserModel | None"] = relationship(
        "UserModel", foreign_keys=[in_reply_to_user_id]
    )
    source: Mapped["PostSourceModel | None"] = relationship("PostSourceModel")
    media: Mapped[list["MediaModel"]] = relationship("MediaModel", back_populates="post")
    hashtags: Mapped[list["HashtagAnnotationModel"]] = relationship(
        "HashtagAnnotationModel", back_populates="post", cascade="all, delete-orphan"
    )
    mentions: Mapped[list["MentionAnnotationModel"]] = relationship(
        "MentionAnnotationModel", back_populates="post", cascade="all, delete-orphan"
    )
    urls: Mapped[list["UrlAnnotationModel"]] = relationship(
        "UrlAnnotationModel", back_populates="post", cascade="all, delete-orphan"
    )


class HashtagModel(Base):
    """Hashtag lookup table keyed by normalized tag text."""

    __tablename__ = "hashtags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class HashtagAnnotationModel(Base):
    """Hashtag occurrence within a post's text."""

    __tablename__ = "hashtag_annotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    start: Mapped[int] = mapped_column(Integer, nullable=False)
    end: Mapped[int] = mapped_column(Integer, nullable=False)
    hashtag_id: Mapped[int] = mapped_column(ForeignKey("hashtags.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("post_id", "start", "end", name="uq_hashtag_annotation_range"),
    )

    post: Mapped["PostModel"] = relationship("PostModel", back_populates="hashtags")
    hashtag: Mapped["HashtagModel"] = relationship("HashtagModel")


class MentionAnnotationModel(Base):
    """Mention occurrence within a post's text."""

    __tablename__ = "mention_annotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    start: Mapped[int] = mapped_column(Integer, nullable=False)
    end: Mapped[int] = mapped_column(Integer, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("post_id", "start", "end", name="uq_mention_annotation_range"),
    )

    post: Mapped["PostModel"] = relationship("PostModel", back_populates="mentions")


class UrlAnnotationModel(Base):
    """Link occurrence within a post's text."""

    __tablename__ = "url_annotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    start: Mapped[int] = mapped_column(Integer, nullable=False)
    end: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    expanded_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    display_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    __table_args__ = (
        UniqueConstraint("post_id", "start", "end", name="uq_url_annotation_range"),
    )

    post: Mapped["PostModel"] = relationship("PostModel", back_populates="urls")


# =============================================================================
# Media and content-addressed files
# =============================================================================


class MimeModel(Base):
    """MIME type lookup table."""

    __tablename__ = "mimes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class FileExtensionModel(Base):
    """File extension lookup table."""

    __tablename__ = "file_extensions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ext: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)


class LocalFileModel(Base):
    """Downloaded bytes, keyed by their SHA-256 digest."""

    __tablename__ = "local_files"

    sha256: Mapped[bytes] = mapped_column(LargeBinary(32), primary_key=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_extension_id: Mapped[int] = mapped_column(
        ForeignKey("file_extensions.id"), nullable=False
    )
    mime_id: Mapped[int] = mapped_column(ForeignKey("mimes.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    file_extension: Mapped["FileExtensionModel"] = relationship("FileExtensionModel")
    mime: Mapped["MimeModel"] = relationship("MimeModel")

    @property
    def filename(self) -> str:
        return f"{self.sha256.hex()}.{self.file_extension.ext}"


class MediaModel(Base):
    """Media attachment of a post, pointing at the downloaded variant."""

    __tablename__ = "media"

    media_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False, index=True)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    file_id: Mapped[bytes] = mapped_column(ForeignKey("local_files.sha256"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    post: Mapped["PostModel"] = relationship("PostModel", back_populates="media")
    file: Mapped["LocalFileModel"] = relationship("LocalFileModel")


# =============================================================================
# Likes
# =============================================================================


class LikeStagingModel(Base):
    """Like observed by a running job, waiting to be promoted."""

    __tablename__ = "like_staging"

    index: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", "job_id", name="uq_like_staging_user_post_job"),
    )

    job: Mapped["JobModel"] = relationship("JobModel", back_populates="staged_likes")


class LikeModel(Base):
    """Permanent like ledger; index order is like chronology, oldest first."""

    __tablename__ = "likes"

    index: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_like_user_post"),)

    post: Mapped["PostModel"] = relationship("PostModel")


# =============================================================================
# Sessions
# =============================================================================


class SessionModel(Base):
    """Login session holding the user's encrypted OAuth token."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    encrypted_token: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
