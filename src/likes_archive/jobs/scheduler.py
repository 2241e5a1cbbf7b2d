"""Durable, strictly sequential job scheduler.

Jobs are persisted before they are queued and deleted only after their
handler returns, so a job interrupted by a crash or a failure is found again
by `initialize()` on the next process start and resumes from the state its
handler last committed.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from likes_archive.db.models import JobModel
from likes_archive.db.session import get_session_context
from likes_archive.domain.enums import JobStatus, JobType
from likes_archive.domain.models import QueuedJob
from likes_archive.logging import get_logger

logger = get_logger(__name__)

CompletedCallback = Callable[[QueuedJob], None]
FailedCallback = Callable[[QueuedJob, BaseException], None]


class JobHandler(ABC):
    """Executes jobs of one type."""

    job_type: ClassVar[JobType]

    @abstractmethod
    async def run(self, job: QueuedJob) -> None:
        """Run a job to completion.

        Handlers persist their own progress; raising leaves the job in the
        database to be resumed on the next start.
        """
        ...


def _to_queued(row: JobModel) -> QueuedJob:
    return QueuedJob(
        id=row.id,
        type=JobType(row.type),
        args=dict(row.args),
        created_at=row.created_at,
    )


class JobScheduler:
    """Owns the job queue and runs one job at a time.

    Only one job ever runs at once: the like staging table assumes a single
    writer.
    """

    def __init__(
        self,
        handlers: Iterable[JobHandler],
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._handlers: dict[JobType, JobHandler] = {h.job_type: h for h in handlers}
        self._queue: deque[QueuedJob] = deque()
        self._running: QueuedJob | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._completed_callbacks: list[CompletedCallback] = []
        self._failed_callbacks: list[FailedCallback] = []

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def on_completed(self, callback: CompletedCallback) -> None:
        """Register a callback invoked after a job completes."""
        self._completed_callbacks.append(callback)

    def on_failed(self, callback: FailedCallback) -> None:
        """Register a callback invoked with the job and error after a job fails."""
        self._failed_callbacks.append(callback)

    def _emit_completed(self, job: QueuedJob) -> None:
        for callback in self._completed_callbacks:
            try:
                callback(job)
            except Exception:
                logger.exception("job_observer_error", job_id=job.id, observer="completed")

    def _emit_failed(self, job: QueuedJob, error: BaseException) -> None:
        for callback in self._failed_callbacks:
            try:
                callback(job, error)
            except Exception:
                logger.exception("job_observer_error", job_id=job.id, observer="failed")

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    @property
    def running(self) -> QueuedJob | None:
        return self._running

    @property
    def queued(self) -> list[QueuedJob]:
        return list(self._queue)

    async def initialize(self) -> list[QueuedJob]:
        """Queue every job left in the database by a previous run.

        Returns:
            The resumed jobs, oldest first.
        """
        known = {job.id for job in self._queue}
        if self._running is not None:
            known.add(self._running.id)

        resumed: list[QueuedJob] = []
        with get_session_context(self.session_factory) as session:
            rows = session.execute(select(JobModel).order_by(JobModel.id)).scalars().all()
            for row in rows:
                if row.id in known:
                    continue
                try:
                    job = _to_queued(row)
                except ValueError:
                    logger.warning("job_type_unknown", job_id=row.id, job_type=row.type)
                    continue
                if job.type not in self._handlers:
                    logger.warning("job_handler_missing", job_id=row.id, job_type=row.type)
                    continue
                resumed.append(job)

        self._queue.extend(resumed)
        logger.info("scheduler_initialized", resumed=len(resumed))
        if self._queue:
            self._ensure_running()
        return resumed

    async def enqueue(self, job_type: JobType, args: Mapping[str, Any]) -> QueuedJob:
        """Persist a job and queue it for execution.

        Returns:
            The queued job.

        Raises:
            ValueError: If no handler is registered for the job type.
        """
        if job_type not in self._handlers:
            raise ValueError(f"No handler registered for job type {job_type}")

        with get_session_context(self.session_factory) as session:
            row = JobModel(type=job_type.value, args=dict(args))
            session.add(row)
            session.flush()
            job = _to_queued(row)

        self._queue.append(job)
        logger.info("job_enqueued", job_id=job.id, job_type=job.type, queued=len(self._queue))
        self._ensure_running()
        return job

    def is_active(self, predicate: Callable[[QueuedJob], bool]) -> bool:
        """Whether a running or queued job matches the predicate.

        Only in-memory state is inspected: jobs left in the database by a
        failure are not active until the next start picks them up.
        """
        return self.status_of(predicate) is not None

    def status_of(self, predicate: Callable[[QueuedJob], bool]) -> JobStatus | None:
        """State of the first running or queued job matching the predicate."""
        if self._running is not None and predicate(self._running):
            return JobStatus.RUNNING
        if any(predicate(job) for job in self._queue):
            return JobStatus.QUEUED
        return None

    async def join(self) -> None:
        """Wait until the queue is drained."""
        while self._loop_task is not None and not self._loop_task.done():
            await self._loop_task

    async def shutdown(self) -> None:
        """Stop the run loop.

        An interrupted job keeps its database row and resumes from its last
        committed page on the next `initialize()`.
        """
        task = self._loop_task
        if task is None or task.done():
            return
        interrupted = self._running
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler_stopped", interrupted=interrupted.id if interrupted else None)

    # -------------------------------------------------------------------------
    # Run loop
    # -------------------------------------------------------------------------

    def _ensure_running(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_loop(), name="job-scheduler")

    async def _run_loop(self) -> None:
        while self._queue:
            job = self._queue.popleft()
            self._running = job
            try:
                await self._execute(job)
            finally:
                self._running = None

    async def _execute(self, job: QueuedJob) -> None:
        handler = self._handlers[job.type]

        with structlog.contextvars.bound_contextvars(job_id=job.id, job_type=str(job.type)):
            logger.info("job_started")
            try:
                await handler.run(job)
                self._delete(job)
            except Exception as e:
                logger.error("job_failed", error=str(e), error_type=type(e).__name__)
                self._emit_failed(job, e)
                return

            logger.info("job_completed")
            self._emit_completed(job)

    def _delete(self, job: QueuedJob) -> None:
        with get_session_context(self.session_factory) as session:
            row = session.get(JobModel, job.id)
            if row is not None:
                session.delete(row)
