"""Likes download endpoints."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from likes_archive.api.deps import SchedulerDep, SessionDep
from likes_archive.db.models import SessionModel, UserModel
from likes_archive.domain.enums import JobStatus, JobType
from likes_archive.domain.models import DownloadLikesArgs, QueuedJob
from likes_archive.logging import get_logger

router = APIRouter(prefix="/downloads", tags=["Downloads"])
logger = get_logger(__name__)


class DownloadRequest(BaseModel):
    """Request to archive a user's likes."""

    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)


class DownloadResponse(BaseModel):
    """Response when a download job is enqueued."""

    job_id: int
    user_id: str
    status: JobStatus


class DownloadStatusResponse(BaseModel):
    """Whether a download is queued or running for a user."""

    user_id: str
    active: bool
    status: JobStatus | None = None


def _is_user_download(user_id: str):
    def predicate(job: QueuedJob) -> bool:
        return job.type == JobType.USER_LIKES_DOWNLOAD and job.args.get("user_id") == user_id

    return predicate


@router.post(
    "",
    response_model=DownloadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Download likes",
    description="Enqueue a job archiving the user's liked posts and their media.",
)
async def start_download(
    request: DownloadRequest,
    db: SessionDep,
    scheduler: SchedulerDep,
) -> DownloadResponse:
    """Enqueue a likes download unless one is already active for the user."""
    if db.get(UserModel, request.user_id) is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"User {request.user_id} not found")

    session = db.get(SessionModel, request.session_id)
    if session is None or session.user_id != request.user_id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Session not found for this user")

    if scheduler.is_active(_is_user_download(request.user_id)):
        raise HTTPException(
            status.HTTP_409_CONFLICT,
            f"A download is already in progress for user {request.user_id}",
        )

    args = DownloadLikesArgs(user_id=request.user_id, session_id=request.session_id)
    job = await scheduler.enqueue(JobType.USER_LIKES_DOWNLOAD, args.model_dump())

    logger.info("download_requested", user_id=request.user_id, job_id=job.id)

    return DownloadResponse(job_id=job.id, user_id=request.user_id, status=JobStatus.QUEUED)


@router.get(
    "/{user_id}",
    response_model=DownloadStatusResponse,
    summary="Download status",
)
async def get_download_status(user_id: str, scheduler: SchedulerDep) -> DownloadStatusResponse:
    """Report whether a download for the user is queued or running."""
    job_status = scheduler.status_of(_is_user_download(user_id))
    return DownloadStatusResponse(
        user_id=user_id,
        active=job_status is not None,
        status=job_status,
    )
