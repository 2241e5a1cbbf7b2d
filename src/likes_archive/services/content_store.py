"""Content-addressed storage for downloaded media.

Files are named by the SHA-256 of their bytes, so identical content fetched
from different URLs is stored once.
"""

import asyncio
import hashlib
import os
import shutil
import tempfile
from pathlib import Path

import filetype
import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from likes_archive.adapters.likes.base import TransientSourceError
from likes_archive.config import settings
from likes_archive.db.models import (
    FileExtensionModel,
    LocalFileModel,
    MediaModel,
    MimeModel,
)
from likes_archive.db.session import get_session_context
from likes_archive.domain.models import StoredFile
from likes_archive.logging import get_logger

logger = get_logger(__name__)

# Enough leading bytes for every signature filetype knows
SNIFF_BUFFER_SIZE = 8192

DEFAULT_EXTENSION = "bin"
DEFAULT_MIME = "application/octet-stream"


class DownloadError(TransientSourceError):
    """A media download failed; the owning job should be retried later."""

    pass


def sniff_file_type(head: bytes) -> tuple[str, str]:
    """Classify content from its leading bytes.

    Returns:
        (extension, mime) with a generic binary classification as fallback.
    """
    kind = filetype.guess(head) if head else None
    if kind is None:
        return DEFAULT_EXTENSION, DEFAULT_MIME
    return kind.extension, kind.mime


def move_file(source: Path, destination: Path) -> None:
    """Move a file, copying across filesystem boundaries when rename fails."""
    try:
        source.rename(destination)
    except OSError as e:
        logger.debug("file_rename_failed", source=str(source), error=str(e))
        shutil.copyfile(source, destination)
        source.unlink()


class ContentStore:
    """Downloads media at most once per distinct content hash.

    Downloads are admitted through a semaphore; callers beyond the limit
    wait for a slot.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        files_dir: Path | None = None,
        temp_dir: Path | None = None,
        max_downloads: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Session factory, the application default if omitted.
            files_dir: Directory for content-addressed files.
            temp_dir: Directory for in-flight downloads.
            max_downloads: Maximum number of simultaneous downloads.
            client: HTTP client to use, created on first download if omitted.
        """
        self.session_factory = session_factory
        self.files_dir = files_dir or settings.files_dir
        self.temp_dir = temp_dir or settings.temp_dir
        self.max_downloads = max_downloads or settings.max_concurrent_downloads
        self._limiter = asyncio.Semaphore(self.max_downloads)
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.download_timeout,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def path_for(self, sha256: bytes, extension: str) -> Path:
        return self.files_dir / f"{sha256.hex()}.{extension}"

    def _to_stored_file(self, record: LocalFileModel) -> StoredFile:
        return StoredFile(
            sha256=record.sha256,
            size=record.size,
            extension=record.file_extension.ext,
            mime=record.mime.name,
            path=self.files_dir / record.filename,
        )

    def find_cached(self, url: str) -> StoredFile | None:
        """Find the file most recently downloaded for a URL.

        Returns None when no media references the URL or its file is gone.
        """
        with get_session_context(self.session_factory) as session:
            media = session.execute(
                select(MediaModel)
                .where(MediaModel.url == url)
                .order_by(MediaModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if media is None:
                return None

            logger.debug("media_record_exists", url=url[:100])
            record = session.get(LocalFileModel, media.file_id)
            stored = self._to_stored_file(record) if record is not None else None

        if stored is None or not stored.path.exists():
            logger.warning("media_file_missing", url=url[:100])
            return None
        return stored

    async def fetch_or_reuse(self, url: str) -> StoredFile:
        """Return the stored file for a URL, downloading it if needed.

        Args:
            url: Source URL of the media.

        Returns:
            The content-addressed file.

        Raises:
            DownloadError: If the download fails. No file is left behind.
        """
        cached = self.find_cached(url)
        if cached is not None:
            return cached

        async with self._limiter:
            return await self._download(url)

    async def _download(self, url: str) -> StoredFile:
        logger.info("download_started", url=url[:100])
        self.files_dir.mkdir(parents=True, exist_ok=True)
        if self.temp_dir:
            self.temp_dir.mkdir(parents=True, exist_ok=True)

        hasher = hashlib.sha256()
        head = bytearray()
        size = 0

        fd, temp_name = tempfile.mkstemp(dir=self.temp_dir, prefix="download-")
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as temp_file:
                client = await self._get_client()
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    # Hash, persist and buffer the head of the body in one pass
                    async for chunk in response.aiter_bytes():
                        hasher.update(chunk)
                        temp_file.write(chunk)
                        if len(head) < SNIFF_BUFFER_SIZE:
                            head.extend(chunk[: SNIFF_BUFFER_SIZE - len(head)])
                        size += len(chunk)
        except httpx.HTTPError as e:
            temp_path.unlink(missing_ok=True)
            logger.error("download_failed", url=url[:100], error=str(e))
            raise DownloadError(f"Download of {url} failed: {e}") from e
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        sha256 = hasher.digest()
        extension, mime = sniff_file_type(bytes(head))
        if mime == DEFAULT_MIME:
            logger.debug("file_type_unknown", url=url[:100])

        destination = self.path_for(sha256, extension)
        try:
            move_file(temp_path, destination)
        finally:
            temp_path.unlink(missing_ok=True)

        stored = StoredFile(
            sha256=sha256, size=size, extension=extension, mime=mime, path=destination
        )
        self._save_record(stored)

        logger.info(
            "download_completed",
            url=url[:100],
            sha256=stored.hex_digest,
            size=size,
            mime=mime,
        )
        return stored

    def _save_record(self, stored: StoredFile) -> None:
        """Upsert the LocalFile row for a stored file."""
        with get_session_context(self.session_factory) as session:
            extension = session.execute(
                select(FileExtensionModel).where(FileExtensionModel.ext == stored.extension)
            ).scalar_one_or_none()
            if extension is None:
                extension = FileExtensionModel(ext=stored.extension)
                session.add(extension)

            mime = session.execute(
                select(MimeModel).where(MimeModel.name == stored.mime)
            ).scalar_one_or_none()
            if mime is None:
                mime = MimeModel(name=stored.mime)
                session.add(mime)
            session.flush()

            record = session.get(LocalFileModel, stored.sha256)
            if record is None:
                session.add(
                    LocalFileModel(
                        sha256=stored.sha256,
                        size=stored.size,
                        file_extension_id=extension.id,
                        mime_id=mime.id,
                    )
                )
            else:
                logger.debug("local_file_exists", sha256=stored.hex_digest)
