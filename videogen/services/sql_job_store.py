"""SQLAlchemy-backed job store.

Keeps job state outside the process so it survives restarts; the service
fails any job left unfinished by a previous process on startup.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Engine, delete, select

from videogen.models.database import init_db, make_session_maker, session_scope
from videogen.models.render_job import RenderJobRecord
from videogen.services.job_registry import ErrorDetail, Job, JobStatus, JobStore


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_job(record: RenderJobRecord) -> Job:
    error_detail = None
    if record.error_message is not None:
        error_detail = ErrorDetail(
            message=record.error_message,
            exit_code=record.error_exit_code,
            stderr=record.error_stderr,
        )
    return Job(
        id=record.id,
        status=JobStatus(record.status),
        progress=record.progress,
        template_id=record.template_id,
        format_key=record.format_key,
        created_at=_as_utc(record.created_at),
        started_at=_as_utc(record.started_at),
        completed_at=_as_utc(record.completed_at),
        failed_at=_as_utc(record.failed_at),
        output_reference=record.output_reference,
        error_detail=error_detail,
    )


def _apply(record: RenderJobRecord, job: Job) -> None:
    record.status = job.status.value
    record.progress = job.progress
    record.template_id = job.template_id
    record.format_key = job.format_key
    record.created_at = job.created_at
    record.started_at = job.started_at
    record.completed_at = job.completed_at
    record.failed_at = job.failed_at
    record.output_reference = job.output_reference
    if job.error_detail is not None:
        record.error_message = job.error_detail.message
        record.error_exit_code = job.error_detail.exit_code
        record.error_stderr = job.error_detail.stderr


class SqlJobStore(JobStore):
    """Job store on a relational database (SQLite by default)."""

    blocking = True

    def __init__(self, engine: Engine) -> None:
        init_db(engine)
        self._session_maker = make_session_maker(engine)

    def load(self, job_id: str) -> Optional[Job]:
        with session_scope(self._session_maker) as db:
            record = db.get(RenderJobRecord, job_id)
            return _to_job(record) if record else None

    def insert(self, job: Job) -> None:
        with session_scope(self._session_maker) as db:
            record = RenderJobRecord(id=job.id)
            _apply(record, job)
            db.add(record)

    def save(self, job: Job) -> None:
        with session_scope(self._session_maker) as db:
            record = db.get(RenderJobRecord, job.id)
            if record is None:
                record = RenderJobRecord(id=job.id)
                db.add(record)
            _apply(record, job)

    def delete(self, job_id: str) -> None:
        with session_scope(self._session_maker) as db:
            db.execute(delete(RenderJobRecord).where(RenderJobRecord.id == job_id))

    def all(self) -> list[Job]:
        with session_scope(self._session_maker) as db:
            result = db.execute(select(RenderJobRecord).order_by(RenderJobRecord.created_at))
            return [_to_job(record) for record in result.scalars().all()]
