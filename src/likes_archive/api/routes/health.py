"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text

from likes_archive.api.deps import SchedulerDep, SessionDep
from likes_archive.logging import get_logger

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: bool
    queued_jobs: int
    running_job: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Verifies the API is running and the database is reachable.",
)
async def health_check(db: SessionDep, scheduler: SchedulerDep) -> HealthResponse:
    """Is the API up, and can it reach the database?"""
    from likes_archive import __version__

    database_ok = False
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    running = scheduler.running

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        database=database_ok,
        queued_jobs=len(scheduler.queued),
        running_job=running.id if running else None,
    )
