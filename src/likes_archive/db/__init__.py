"""Database layer."""

from likes_archive.db.models import (
    Base,
    FileExtensionModel,
    HashtagAnnotationModel,
    HashtagModel,
    JobModel,
    LikeModel,
    LikeStagingModel,
    LocalFileModel,
    MediaModel,
    MentionAnnotationModel,
    MimeModel,
    PostModel,
    PostSourceModel,
    SessionModel,
    UrlAnnotationModel,
    UserModel,
)
from likes_archive.db.session import (
    create_db_engine,
    create_session_factory,
    get_session_context,
    init_db,
)

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "get_session_context",
    "init_db",
    # Models
    "FileExtensionModel",
    "HashtagAnnotationModel",
    "HashtagModel",
    "JobModel",
    "LikeModel",
    "LikeStagingModel",
    "LocalFileModel",
    "MediaModel",
    "MentionAnnotationModel",
    "MimeModel",
    "PostModel",
    "PostSourceModel",
    "SessionModel",
    "UrlAnnotationModel",
    "UserModel",
]
