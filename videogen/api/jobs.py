"""Job status API endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from videogen.api.deps import Registry
from videogen.schemas.render import JobListResponse, JobResponse
from videogen.services.job_registry import JobStatus

router = APIRouter()


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    registry: Registry,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> JobListResponse:
    """List jobs, optionally filtered by ``?status=pending|processing|completed|failed``."""
    job_status = None
    if status_filter:
        try:
            job_status = JobStatus(status_filter)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown job status: {status_filter}",
            )
    jobs = [JobResponse.from_job(job) for job in registry.list_jobs(job_status)]
    return JobListResponse(jobs=jobs, count=len(jobs))


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, registry: Registry) -> JobResponse:
    """Current state of a job. 404 for ids that were never issued."""
    return JobResponse.from_job(registry.get(job_id))
