"""
Background Job Manager — in-process job table for TDF imports.

Lifecycle:
  pending -> running -> succeeded | failed
  pending -> cancelled            (cancel before a worker picks it up)
  running -> cancelled            (cooperative, observed between entries
                                   or when the executor returns)

Terminal states never change. The table lives in memory and is not shared
across processes; every read hands out a copy so callers cannot mutate it.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from tdfbridge.config import TDF_JOB_MAX_WORKERS, TDF_JOB_RETENTION_HOURS
from tdfbridge.exceptions import JobCancelled

logger = logging.getLogger(__name__)

SubmitFn = Callable[..., Any]


class JobState(str, Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATES = frozenset({JobState.succeeded, JobState.failed, JobState.cancelled})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobOptions(BaseModel):
    generate_report: bool = True
    update_data: bool = True


class BackgroundJob(BaseModel):
    id: str
    tournament_id: int
    file_id: int
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    state: JobState = JobState.pending
    options: JobOptions = Field(default_factory=JobOptions)
    result: Optional[Any] = None  # ImportJobResult on success
    error: Optional[str] = None
    progress: int = 0  # 0-100
    message: Optional[str] = None
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class JobContext:
    """Handle passed to the executor for progress reporting and cancellation polling."""

    def __init__(self, manager: "JobManager", job_id: str):
        self._manager = manager
        self.job_id = job_id

    def checkpoint(self) -> None:
        """Raise JobCancelled if cancellation has been requested."""
        if self._manager.is_cancel_requested(self.job_id):
            raise JobCancelled(self.job_id)

    def progress(self, percent: int, message: Optional[str] = None) -> None:
        self._manager.update_progress(self.job_id, percent, message)


class JobManager:
    """
    Owns the job table and hands each job to one worker.

    ``executor`` must provide ``execute(job, context)``. ``submit`` defaults to
    a ThreadPoolExecutor's submit; pass ``lambda fn, *a: fn(*a)`` to run jobs
    inline. Finished jobs older than retention_hours are dropped whenever a
    new job is created.
    """

    def __init__(
        self,
        executor,
        submit: Optional[SubmitFn] = None,
        max_workers: int = TDF_JOB_MAX_WORKERS,
        retention_hours: int = TDF_JOB_RETENTION_HOURS,
    ):
        self._executor = executor
        self._retention_hours = retention_hours
        self._jobs: Dict[str, BackgroundJob] = {}
        self._lock = threading.RLock()
        self._pool: Optional[ThreadPoolExecutor] = None
        if submit is None:
            self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tdf-job")
            submit = self._pool.submit
        self._submit = submit

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def create_job(
        self,
        tournament_id: int,
        file_id: int,
        user_id: Optional[str] = None,
        options: Optional[JobOptions] = None,
    ) -> str:
        self.cleanup_old_jobs(self._retention_hours)
        job = BackgroundJob(
            id=f"job_{uuid.uuid4().hex}",
            tournament_id=tournament_id,
            file_id=file_id,
            created_by=user_id,
            options=options or JobOptions(),
            message="Queued",
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.info("Created job %s for tournament %s (file %s)", job.id, tournament_id, file_id)

        self._submit(self._run, job.id)
        return job.id

    def get_job(self, job_id: str) -> Optional[BackgroundJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def get_jobs_for_tournament(self, tournament_id: int) -> List[BackgroundJob]:
        with self._lock:
            # Reverse insertion order so ties on created_at still come out newest first
            jobs = [
                job.model_copy(deep=True)
                for job in reversed(list(self._jobs.values()))
                if job.tournament_id == tournament_id
            ]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def cancel_job(self, job_id: str) -> bool:
        """
        Request cancellation.

        Returns True only when the job was pending or running and the flag was
        set. A pending job is cancelled on the spot; a running one stops at
        its executor's next checkpoint, or ends cancelled instead of succeeded
        if the request lands after the last one.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            job.cancel_requested = True
            if job.state == JobState.pending:
                job.state = JobState.cancelled
                job.completed_at = _now()
                job.message = "Cancelled before start"
                logger.info("Job %s cancelled while pending", job_id)
            else:
                job.message = "Cancellation requested"
                logger.info("Cancellation requested for running job %s", job_id)
            return True

    def cleanup_old_jobs(self, max_age_hours: int) -> int:
        """Drop terminal jobs that finished more than max_age_hours ago."""
        cutoff = _now() - timedelta(hours=max_age_hours)
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal and (job.completed_at or job.created_at) < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.info("Removed %d finished jobs older than %d hours", len(stale), max_age_hours)
        return len(stale)

    def shutdown(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Executor side
    # ------------------------------------------------------------------

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return job is None or job.cancel_requested

    def update_progress(self, job_id: str, percent: int, message: Optional[str] = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            job.progress = max(0, min(100, int(percent)))
            if message is not None:
                job.message = message

    def _start(self, job_id: str) -> Optional[BackgroundJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.pending:
                return None
            job.state = JobState.running
            job.started_at = _now()
            job.message = "Processing"
            logger.info("Job %s running", job_id)
            return job.model_copy(deep=True)

    def _finish(
        self,
        job_id: str,
        state: JobState,
        result: Any = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            if state == JobState.succeeded and job.cancel_requested:
                # Cancel arrived after the executor's last checkpoint
                state, result, message = JobState.cancelled, None, "Cancelled"
            job.state = state
            job.completed_at = _now()
            job.result = result
            job.error = error
            job.message = message
            if state == JobState.succeeded:
                job.progress = 100
        logger.info("Job %s %s", job_id, state.value)

    def _run(self, job_id: str) -> None:
        job = self._start(job_id)
        if job is None:
            return

        context = JobContext(self, job_id)
        try:
            result = self._executor.execute(job, context)
        except JobCancelled:
            self._finish(job_id, JobState.cancelled, message="Cancelled")
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            self._finish(job_id, JobState.failed, error=f"{type(exc).__name__}: {exc}", message="Failed")
        else:
            self._finish(job_id, JobState.succeeded, result=result, message="Completed")


# Singleton instance
_job_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    """Get or create the job manager singleton"""
    global _job_manager
    if _job_manager is None:
        from tdfbridge.database import engine
        from tdfbridge.services.blob_store import get_blob_store
        from tdfbridge.services.job_executor import ImportJobExecutor

        _job_manager = JobManager(ImportJobExecutor(get_blob_store(), engine))
    return _job_manager


def shutdown_job_manager() -> None:
    """Stop the singleton's worker pool, if one was ever created."""
    if _job_manager is not None:
        _job_manager.shutdown(wait=False)
