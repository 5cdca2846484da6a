"""Tests for the job registry.

Features:
- One-directional state machine (pending -> processing -> completed | failed)
- Snapshot reads
- Per-job locking under concurrent writers
- SQL-backed store and restart recovery
- TTL eviction
"""

import threading
from datetime import timedelta
from pathlib import Path

import pytest

from videogen.exceptions import (
    InvalidJobTransitionError,
    JobAlreadyExistsError,
    JobNotFoundError,
)
from videogen.models.database import create_db_engine
from videogen.services.job_registry import (
    ErrorDetail,
    InMemoryJobStore,
    JobRegistry,
    JobStatus,
)
from videogen.services.render_orchestrator import RESTART_REASON
from videogen.services.sql_job_store import SqlJobStore


class TestJobStatus:
    """Tests for JobStatus enum."""

    def test_statuses_exist(self):
        assert JobStatus.PENDING.value == "pending"
        assert JobStatus.PROCESSING.value == "processing"
        assert JobStatus.COMPLETED.value == "completed"
        assert JobStatus.FAILED.value == "failed"

    def test_terminal_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.PROCESSING.is_terminal


class TestCreateAndGet:
    """Tests for create/get."""

    def test_create_is_pending(self, registry):
        job = registry.create(template_id="VideoTextoSimples", format_key="landscape")
        assert job.status == JobStatus.PENDING
        assert job.progress == 0
        assert job.output_reference is None
        assert job.error_detail is None
        assert job.created_at.tzinfo is not None

    def test_create_with_explicit_id(self, registry):
        job = registry.create("job-1")
        assert registry.get("job-1").id == job.id

    def test_ids_are_unique(self, registry):
        ids = {registry.create().id for _ in range(50)}
        assert len(ids) == 50

    def test_duplicate_id_rejected(self, registry):
        registry.create("job-1")
        with pytest.raises(JobAlreadyExistsError):
            registry.create("job-1")

    @pytest.mark.parametrize("job_id", ["", "not-a-uuid", "00000000-0000-0000-0000-000000000000"])
    def test_unknown_ids_not_found(self, registry, job_id):
        with pytest.raises(JobNotFoundError):
            registry.get(job_id)

    def test_get_returns_snapshot(self, registry):
        job = registry.create("job-1")
        snapshot = registry.get(job.id)
        snapshot.status = JobStatus.COMPLETED
        snapshot.progress = 100
        assert registry.get(job.id).status == JobStatus.PENDING
        assert registry.get(job.id).progress == 0

    def test_to_dict(self, registry):
        job = registry.create("job-1", template_id="VideoTextoSimples")
        data = job.to_dict()
        assert data["id"] == "job-1"
        assert data["status"] == "pending"
        assert data["template_id"] == "VideoTextoSimples"
        assert data["completed_at"] is None


class TestTransitions:
    """Tests for the state machine."""

    def test_happy_path(self, registry):
        job = registry.create()
        processing = registry.transition(job.id, JobStatus.PROCESSING)
        assert processing.progress == 10
        assert processing.started_at is not None

        done = registry.transition(job.id, JobStatus.COMPLETED, output_reference=f"{job.id}.mp4")
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.output_reference == f"{job.id}.mp4"
        assert done.completed_at is not None
        assert done.error_detail is None

    def test_failure_records_error_detail(self, registry):
        job = registry.create()
        registry.transition(job.id, JobStatus.PROCESSING)
        failed = registry.transition(
            job.id,
            JobStatus.FAILED,
            error_detail=ErrorDetail(message="boom", exit_code=1, stderr="trace"),
        )
        assert failed.status == JobStatus.FAILED
        assert failed.error_detail.exit_code == 1
        assert failed.output_reference is None
        assert failed.failed_at is not None
        # Progress keeps what was reached
        assert failed.progress == 10

    def test_pending_can_fail(self, registry):
        job = registry.create()
        failed = registry.transition(job.id, JobStatus.FAILED, error_detail=ErrorDetail("interrupted"))
        assert failed.status == JobStatus.FAILED
        assert failed.progress == 0

    def test_pending_cannot_complete(self, registry):
        job = registry.create()
        with pytest.raises(InvalidJobTransitionError):
            registry.transition(job.id, JobStatus.COMPLETED, output_reference="x.mp4")

    def test_terminal_states_are_final(self, registry):
        job = registry.create()
        registry.transition(job.id, JobStatus.PROCESSING)
        registry.transition(job.id, JobStatus.COMPLETED, output_reference="x.mp4")
        for status in JobStatus:
            with pytest.raises(InvalidJobTransitionError):
                registry.transition(
                    job.id,
                    status,
                    output_reference="y.mp4",
                    error_detail=ErrorDetail("late"),
                )
        assert registry.get(job.id).output_reference == "x.mp4"

    def test_no_backwards_transition(self, registry):
        job = registry.create()
        registry.transition(job.id, JobStatus.PROCESSING)
        with pytest.raises(InvalidJobTransitionError):
            registry.transition(job.id, JobStatus.PENDING)

    def test_completed_requires_output_reference(self, registry):
        job = registry.create()
        registry.transition(job.id, JobStatus.PROCESSING)
        with pytest.raises(InvalidJobTransitionError):
            registry.transition(job.id, JobStatus.COMPLETED)
        assert registry.get(job.id).status == JobStatus.PROCESSING

    def test_failed_requires_error_detail(self, registry):
        job = registry.create()
        with pytest.raises(InvalidJobTransitionError):
            registry.transition(job.id, JobStatus.FAILED)

    def test_transition_unknown_job(self, registry):
        with pytest.raises(JobNotFoundError):
            registry.transition("missing", JobStatus.PROCESSING)

    def test_jobs_are_independent(self, registry):
        a = registry.create()
        b = registry.create()
        registry.transition(a.id, JobStatus.PROCESSING)
        registry.transition(a.id, JobStatus.FAILED, error_detail=ErrorDetail("boom"))
        assert registry.get(b.id).status == JobStatus.PENDING
        assert registry.get(b.id).error_detail is None


class TestListAndRecovery:
    """Tests for list_jobs, fail_unfinished and evict_expired."""

    def test_list_jobs_filters_by_status(self, registry):
        a = registry.create()
        registry.create()
        registry.transition(a.id, JobStatus.PROCESSING)
        assert [j.id for j in registry.list_jobs(JobStatus.PROCESSING)] == [a.id]
        assert len(registry.list_jobs()) == 2

    def test_fail_unfinished(self, registry):
        pending = registry.create()
        processing = registry.create()
        done = registry.create()
        registry.transition(processing.id, JobStatus.PROCESSING)
        registry.transition(done.id, JobStatus.PROCESSING)
        registry.transition(done.id, JobStatus.COMPLETED, output_reference="done.mp4")

        assert registry.fail_unfinished("shutting down") == 2
        for job_id in (pending.id, processing.id):
            job = registry.get(job_id)
            assert job.status == JobStatus.FAILED
            assert job.error_detail.message == "shutting down"
        assert registry.get(done.id).status == JobStatus.COMPLETED

    def test_eviction_disabled_by_default(self, registry):
        job = registry.create()
        registry.transition(job.id, JobStatus.FAILED, error_detail=ErrorDetail("x"))
        assert registry.evict_expired() == 0
        assert registry.get(job.id)

    def test_eviction_drops_old_terminal_jobs(self):
        registry = JobRegistry(InMemoryJobStore(), ttl_seconds=60)
        old = registry.create()
        registry.transition(old.id, JobStatus.FAILED, error_detail=ErrorDetail("x"))
        running = registry.create()
        registry.transition(running.id, JobStatus.PROCESSING)

        later = registry.get(old.id).failed_at + timedelta(seconds=120)
        assert registry.evict_expired(now=later) == 1
        with pytest.raises(JobNotFoundError):
            registry.get(old.id)
        assert registry.get(running.id).status == JobStatus.PROCESSING


class TestConcurrency:
    """Concurrent writers from multiple threads."""

    def test_concurrent_lifecycles(self, registry):
        jobs = [registry.create() for _ in range(40)]
        errors = []

        def run(job_id: str, succeed: bool) -> None:
            try:
                registry.transition(job_id, JobStatus.PROCESSING)
                if succeed:
                    registry.transition(job_id, JobStatus.COMPLETED, output_reference=f"{job_id}.mp4")
                else:
                    registry.transition(job_id, JobStatus.FAILED, error_detail=ErrorDetail(job_id))
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [
            threading.Thread(target=run, args=(job.id, i % 2 == 0)) for i, job in enumerate(jobs)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for i, job in enumerate(jobs):
            final = registry.get(job.id)
            if i % 2 == 0:
                assert final.status == JobStatus.COMPLETED
                assert final.output_reference == f"{job.id}.mp4"
            else:
                assert final.status == JobStatus.FAILED
                assert final.error_detail.message == job.id

    def test_racing_writers_on_one_job(self, registry):
        """Exactly one terminal write wins."""
        job = registry.create()
        registry.transition(job.id, JobStatus.PROCESSING)
        barrier = threading.Barrier(8)
        winners = []
        losers = []

        def finish(n: int) -> None:
            barrier.wait()
            try:
                registry.transition(job.id, JobStatus.COMPLETED, output_reference=f"{n}.mp4")
                winners.append(n)
            except InvalidJobTransitionError:
                losers.append(n)

        threads = [threading.Thread(target=finish, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 7
        assert registry.get(job.id).output_reference == f"{winners[0]}.mp4"


class TestSqlJobStore:
    """Registry backed by SQLAlchemy."""

    @pytest.fixture
    def sql_registry(self):
        engine = create_db_engine("sqlite://")
        yield JobRegistry(SqlJobStore(engine))
        engine.dispose()

    def test_round_trip(self, sql_registry):
        job = sql_registry.create(template_id="VideoTextoSimples", format_key="tiktok")
        sql_registry.transition(job.id, JobStatus.PROCESSING)
        sql_registry.transition(
            job.id,
            JobStatus.FAILED,
            error_detail=ErrorDetail(message="boom", exit_code=2, stderr="err"),
        )

        stored = sql_registry.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.template_id == "VideoTextoSimples"
        assert stored.format_key == "tiktok"
        assert stored.error_detail == ErrorDetail(message="boom", exit_code=2, stderr="err")
        assert stored.created_at.tzinfo is not None
        assert stored.started_at is not None

    def test_unknown_job(self, sql_registry):
        with pytest.raises(JobNotFoundError):
            sql_registry.get("missing")

    def test_duplicate_id(self, sql_registry):
        sql_registry.create("job-1")
        with pytest.raises(JobAlreadyExistsError):
            sql_registry.create("job-1")

    def test_list_jobs_oldest_first(self, sql_registry):
        ids = [sql_registry.create().id for _ in range(3)]
        assert [job.id for job in sql_registry.list_jobs()] == ids

    def test_restart_recovery(self, tmp_path: Path):
        """Jobs interrupted by a process exit are failed by the next process."""
        url = f"sqlite:///{tmp_path / 'jobs.db'}"

        engine = create_db_engine(url)
        first = JobRegistry(SqlJobStore(engine))
        running = first.create()
        queued = first.create()
        done = first.create()
        first.transition(running.id, JobStatus.PROCESSING)
        first.transition(done.id, JobStatus.PROCESSING)
        first.transition(done.id, JobStatus.COMPLETED, output_reference=f"{done.id}.mp4")
        engine.dispose()

        # A fresh registry sees the previous process's jobs
        engine = create_db_engine(url)
        second = JobRegistry(SqlJobStore(engine))
        assert second.get(running.id).status == JobStatus.PROCESSING

        assert second.fail_unfinished(RESTART_REASON) == 2
        for job_id in (running.id, queued.id):
            job = second.get(job_id)
            assert job.status == JobStatus.FAILED
            assert job.error_detail.message == RESTART_REASON
        assert second.get(done.id).output_reference == f"{done.id}.mp4"
        engine.dispose()
