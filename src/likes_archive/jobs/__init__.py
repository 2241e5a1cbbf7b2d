"""Background jobs and the scheduler that runs them."""

from sqlalchemy.orm import Session, sessionmaker

from likes_archive.domain.models import QueuedJob
from likes_archive.jobs.download_likes import (
    DownloadLikesJob,
    SourceFactory,
    twitter_source_factory,
)
from likes_archive.jobs.scheduler import JobHandler, JobScheduler
from likes_archive.logging import get_logger
from likes_archive.services.content_store import ContentStore
from likes_archive.services.sessions import SessionStore

logger = get_logger(__name__)


def log_job_completed(job: QueuedJob) -> None:
    logger.info("job_finished", job_id=job.id, job_type=str(job.type))


def log_job_failed(job: QueuedJob, error: BaseException) -> None:
    logger.error(
        "job_will_resume_on_restart",
        job_id=job.id,
        job_type=str(job.type),
        error=str(error),
    )


def create_scheduler(
    session_factory: sessionmaker[Session] | None = None,
    content_store: ContentStore | None = None,
    source_factory: SourceFactory = twitter_source_factory,
) -> JobScheduler:
    """Build a scheduler with every job handler registered.

    Args:
        session_factory: Session factory, the application default if omitted.
        content_store: Media store, built from settings if omitted.
        source_factory: Builds a likes source from a session's token.

    Returns:
        A scheduler with logging observers attached. Call initialize() to
        resume persisted jobs.
    """
    download_likes = DownloadLikesJob(
        content_store=content_store or ContentStore(session_factory=session_factory),
        session_store=SessionStore(session_factory),
        source_factory=source_factory,
        session_factory=session_factory,
    )
    scheduler = JobScheduler([download_likes], session_factory=session_factory)
    scheduler.on_completed(log_job_completed)
    scheduler.on_failed(log_job_failed)
    return scheduler


__all__ = [
    "DownloadLikesJob",
    "JobHandler",
    "JobScheduler",
    "SourceFactory",
    "create_scheduler",
    "log_job_completed",
    "log_job_failed",
    "twitter_source_factory",
]
