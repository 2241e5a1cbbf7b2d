"""FastAPI dependencies."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from likes_archive.jobs.scheduler import JobScheduler


async def get_db_session(request: Request) -> AsyncGenerator[Session, None]:
    """Get a database session from the application's session factory.

    Async so the session is used on the event loop thread, the same thread
    the scheduler's jobs write from.
    """
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


# Database session dependency
SessionDep = Annotated[Session, Depends(get_db_session)]


def get_scheduler(request: Request) -> JobScheduler:
    """Get the scheduler started by the application lifespan."""
    return request.app.state.scheduler


SchedulerDep = Annotated[JobScheduler, Depends(get_scheduler)]
