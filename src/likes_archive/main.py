"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.orm import Session, sessionmaker

from likes_archive import __version__
from likes_archive.api.routes import downloads, feed, health
from likes_archive.config import settings
from likes_archive.db.session import SessionLocal, init_db
from likes_archive.jobs import JobScheduler, create_scheduler
from likes_archive.logging import get_logger, setup_logging
from likes_archive.services.content_store import ContentStore

# Setup logging
setup_logging()
logger = get_logger(__name__)


def create_app(
    session_factory: sessionmaker[Session] | None = None,
    scheduler: JobScheduler | None = None,
) -> FastAPI:
    """Create the API application.

    Args:
        session_factory: Session factory, the application default if omitted.
        scheduler: Job scheduler, built with every handler if omitted.

    Returns:
        The application. Its lifespan creates missing tables, then resumes
        persisted jobs.
    """
    session_factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        logger.info("application_starting", version=__version__)

        init_db(session_factory.kw["bind"])
        logger.info("database_connected")

        # A scheduler passed in brings its own media store
        content_store = None
        if scheduler is None:
            content_store = ContentStore(session_factory=session_factory)

        app.state.session_factory = session_factory
        app.state.scheduler = scheduler or create_scheduler(
            session_factory, content_store=content_store
        )
        await app.state.scheduler.initialize()

        yield

        # Shutdown
        logger.info("application_shutting_down")
        await app.state.scheduler.shutdown()
        if content_store is not None:
            await content_store.aclose()

    app = FastAPI(
        title="Likes Archive",
        description="Resumable archive of liked posts and their media",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(downloads.router, prefix="/api/v1")
    app.include_router(feed.router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        """Root endpoint redirect to docs."""
        return {
            "name": "Likes Archive",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "likes_archive.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
