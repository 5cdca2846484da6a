"""Process-wide registry of render jobs.

A job moves strictly forward through its lifecycle:

    pending -> processing -> completed | failed

``pending -> failed`` is also allowed, for jobs that never got to run
(service shutdown or restart). Terminal states are final.

The registry owns every job record. Reads return snapshot copies; writes go
through ``transition`` under a per-job lock, so jobs with different ids never
contend with each other.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from videogen.exceptions import InvalidJobTransitionError, JobAlreadyExistsError, JobNotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(Enum):
    """Render job status.

    ``pending -> failed`` is the one transition that skips ``processing``; it
    is used only when shutdown or restart fails a job that never ran.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# Coarse progress reported for each state; failed keeps whatever was reached.
PROGRESS_BY_STATUS: dict[JobStatus, int] = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 10,
    JobStatus.COMPLETED: 100,
}


@dataclass
class ErrorDetail:
    """Why a job failed."""

    message: str
    exit_code: Optional[int] = None
    stderr: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "exit_code": self.exit_code, "stderr": self.stderr}


@dataclass
class Job:
    """Render job record."""

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    template_id: Optional[str] = None
    format_key: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    output_reference: Optional[str] = None
    error_detail: Optional[ErrorDetail] = None

    @property
    def finished_at(self) -> Optional[datetime]:
        return self.completed_at or self.failed_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "template_id": self.template_id,
            "format_key": self.format_key,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "output_reference": self.output_reference,
            "error_detail": self.error_detail.to_dict() if self.error_detail else None,
        }


# ============================================================================
# Stores
# ============================================================================


class JobStore(ABC):
    """Persistence backend for job records.

    Stores do no locking of individual records; the registry serializes writes.
    """

    # True when reads and writes wait on I/O (a database round trip)
    blocking: bool = False

    @abstractmethod
    def load(self, job_id: str) -> Optional[Job]:
        """Return the stored job, or None."""

    @abstractmethod
    def insert(self, job: Job) -> None:
        """Store a new job."""

    @abstractmethod
    def save(self, job: Job) -> None:
        """Persist changes to an existing job."""

    @abstractmethod
    def delete(self, job_id: str) -> None:
        """Forget a job."""

    @abstractmethod
    def all(self) -> list[Job]:
        """Every stored job, oldest first."""


class InMemoryJobStore(JobStore):
    """Dict-backed store; jobs live as long as the process."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def load(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def insert(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)

    def save(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def all(self) -> list[Job]:
        with self._lock:
            jobs = [copy.deepcopy(job) for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at)


# ============================================================================
# Registry
# ============================================================================


class JobRegistry:
    """Thread-safe job registry with one-directional status transitions."""

    def __init__(self, store: Optional[JobStore] = None, ttl_seconds: int = 0) -> None:
        self._store = store or InMemoryJobStore()
        self._ttl = ttl_seconds
        self._index_lock = threading.Lock()
        self._job_locks: dict[str, threading.Lock] = {}

    @property
    def blocking(self) -> bool:
        return self._store.blocking

    def _lock_for(self, job_id: str) -> threading.Lock:
        """Per-job lock; created lazily for jobs loaded from a durable store."""
        with self._index_lock:
            lock = self._job_locks.get(job_id)
            if lock is None:
                if not job_id or self._store.load(job_id) is None:
                    raise JobNotFoundError(job_id)
                lock = threading.Lock()
                self._job_locks[job_id] = lock
            return lock

    def create(
        self,
        job_id: Optional[str] = None,
        *,
        template_id: Optional[str] = None,
        format_key: Optional[str] = None,
    ) -> Job:
        """Register a new job in ``pending``."""
        self.evict_expired()
        job_id = job_id or str(uuid4())
        with self._index_lock:
            if job_id in self._job_locks or self._store.load(job_id) is not None:
                raise JobAlreadyExistsError(job_id)
            job = Job(id=job_id, template_id=template_id, format_key=format_key)
            self._store.insert(job)
            self._job_locks[job_id] = threading.Lock()
        logger.debug(f"Job {job_id} created (template={template_id})")
        return job

    def get(self, job_id: str) -> Job:
        """Snapshot of a job. Raises JobNotFoundError for unknown ids."""
        job = self._store.load(job_id) if job_id else None
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        jobs = self._store.all()
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return jobs

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output_reference: Optional[str] = None,
        error_detail: Optional[ErrorDetail] = None,
    ) -> Job:
        """Move a job to ``status``, recording the terminal payload."""
        with self._lock_for(job_id):
            job = self._store.load(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if status not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidJobTransitionError(job_id, job.status.value, status.value)

            now = _utcnow()
            if status == JobStatus.PROCESSING:
                job.started_at = now
            elif status == JobStatus.COMPLETED:
                if not output_reference:
                    raise InvalidJobTransitionError(
                        message=f"Job {job_id} cannot complete without an output reference"
                    )
                job.output_reference = output_reference
                job.completed_at = now
            elif status == JobStatus.FAILED:
                if error_detail is None:
                    raise InvalidJobTransitionError(
                        message=f"Job {job_id} cannot fail without an error detail"
                    )
                job.error_detail = error_detail
                job.failed_at = now

            job.status = status
            job.progress = max(job.progress, PROGRESS_BY_STATUS.get(status, job.progress))
            self._store.save(job)

        logger.debug(f"Job {job_id} -> {status.value}")
        return job

    def fail_unfinished(self, reason: str) -> int:
        """Fail every job that has not reached a terminal state.

        Returns the number of jobs failed.
        """
        failed = 0
        for job in self._store.all():
            if job.status.is_terminal:
                continue
            try:
                self.transition(job.id, JobStatus.FAILED, error_detail=ErrorDetail(message=reason))
                failed += 1
            except InvalidJobTransitionError:
                # Finished while we were iterating
                continue
        if failed:
            logger.warning(f"Marked {failed} unfinished job(s) as failed: {reason}")
        return failed

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs older than the TTL. No-op when TTL is disabled."""
        if self._ttl <= 0:
            return 0
        cutoff = (now or _utcnow()) - timedelta(seconds=self._ttl)
        evicted = 0
        for job in self._store.all():
            finished_at = job.finished_at
            if job.status.is_terminal and finished_at is not None and finished_at < cutoff:
                with self._index_lock:
                    self._store.delete(job.id)
                    self._job_locks.pop(job.id, None)
                evicted += 1
        if evicted:
            logger.info(f"Evicted {evicted} expired job(s)")
        return evicted
