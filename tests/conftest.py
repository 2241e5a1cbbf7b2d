"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENCRYPTION_MASTER_KEY"] = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="
os.environ["TWITTER_CLIENT_ID"] = "test-client-id"

from likes_archive.db.models import Base  # noqa: E402
from likes_archive.db.session import create_db_engine, create_session_factory  # noqa: E402
from likes_archive.domain.enums import MediaType  # noqa: E402
from likes_archive.domain.models import (  # noqa: E402
    Author,
    HashtagAnnotation,
    LikesPage,
    MediaItem,
    MentionAnnotation,
    OAuthToken,
    Post,
    UrlAnnotation,
)
from likes_archive.services.content_store import ContentStore  # noqa: E402
from likes_archive.services.sessions import SessionStore  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64

OWNER = Author(
    id="100",
    name="Archive Owner",
    username="owner",
    created_at=datetime(2015, 3, 1, tzinfo=UTC),
)
POSTER = Author(
    id="200",
    name="Some Poster",
    username="poster",
    created_at=datetime(2012, 6, 1, tzinfo=UTC),
)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory database shared by every session of a test."""
    db_engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def files_dir(tmp_path: Path) -> Path:
    return tmp_path / "files"


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path / "tmp"


class MediaServer:
    """Serves fixed bodies by URL and counts requests."""

    def __init__(self, bodies: dict[str, bytes] | None = None) -> None:
        self.bodies = dict(bodies or {})
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url not in self.bodies:
            return httpx.Response(404)
        return httpx.Response(200, content=self.bodies[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def media_server() -> MediaServer:
    return MediaServer()


@pytest.fixture
def content_store(
    session_factory: sessionmaker[Session],
    files_dir: Path,
    temp_dir: Path,
    media_server: MediaServer,
) -> ContentStore:
    return ContentStore(
        session_factory=session_factory,
        files_dir=files_dir,
        temp_dir=temp_dir,
        max_downloads=10,
        client=media_server.client(),
    )


@pytest.fixture
def token() -> OAuthToken:
    return OAuthToken(access_token="access-1", refresh_token="refresh-1")


@pytest.fixture
def session_store(session_factory: sessionmaker[Session]) -> SessionStore:
    return SessionStore(session_factory)


@pytest.fixture
def owner_session(session_store: SessionStore, token: OAuthToken) -> str:
    """Registered session for OWNER."""
    return session_store.register_session(OWNER, token, session_id="session-1")


def make_post(
    post_id: str,
    media_urls: list[str] | None = None,
    text: str | None = None,
    author: Author = POSTER,
    **kwargs,
) -> Post:
    """Build a post whose media keys are derived from its id."""
    media = [
        MediaItem(media_key=f"{post_id}-m{i}", type=MediaType.PHOTO, url=url)
        for i, url in enumerate(media_urls or [])
    ]
    return Post(
        id=post_id,
        text=text if text is not None else f"post {post_id}",
        created_at=datetime(2023, 1, 1, tzinfo=UTC),
        author=author,
        media=media,
        **kwargs,
    )


def make_page(*post_ids: str) -> LikesPage:
    return LikesPage(posts=[make_post(post_id) for post_id in post_ids])


@pytest.fixture
def post_factory() -> Callable[..., Post]:
    return make_post


@pytest.fixture
def annotated_post() -> Post:
    """A post carrying one annotation of each kind."""
    return make_post(
        "300",
        text="Hi @friend see #News https://t.co/x",
        mentions=[MentionAnnotation(start=3, end=10, username="friend")],
        hashtags=[HashtagAnnotation(start=15, end=20, tag="News")],
        urls=[
            UrlAnnotation(
                start=21,
                end=35,
                url="https://t.co/x",
                expanded_url="https://example.com/article",
                display_url="example.com/article",
            )
        ],
    )
