"""Business logic services."""

from likes_archive.services.content_store import ContentStore, DownloadError
from likes_archive.services.importer import StorageIntegrityError, import_transaction, upsert_post
from likes_archive.services.rendering import render_annotations, render_post
from likes_archive.services.sessions import SessionStore
from likes_archive.services.staging import liked_post_ids, promote_likes, stage_likes

__all__ = [
    "ContentStore",
    "DownloadError",
    "SessionStore",
    "StorageIntegrityError",
    "import_transaction",
    "liked_post_ids",
    "promote_likes",
    "render_annotations",
    "render_post",
    "stage_likes",
    "upsert_post",
]
