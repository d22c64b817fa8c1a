"""
Job submission and inspection routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pueue.constants import API_V1_PREFIX, JobStatus
from pueue.db import get_async_session
from pueue.db.connection import commit_or_raise
from pueue.db.repository import JobRepository
from pueue.observability.metrics import get_metrics
from pueue.types.api import (
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    SubmitJobRequest,
    SubmitJobResponse,
)
from pueue.types.job import JobOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_V1_PREFIX, tags=["Jobs"])


@router.post(
    "/processes/{process_name}/jobs",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a job",
    description="Enqueue a job for the given process name. Idempotent on a client-supplied id.",
)
async def submit_job(
    process_name: str,
    request: SubmitJobRequest,
    session: AsyncSession = Depends(get_async_session),
) -> SubmitJobResponse:
    """
    Submit a new job.

    If a job with the same (id, process_name) exists, it is returned unchanged.
    """
    options = JobOptions(
        id=request.id,
        max_attempts=request.max_attempts,
        delay=request.delay,
        backoff=request.backoff,
    )

    repo = JobRepository(session)
    job, created = await repo.create_job(process_name, request.payload, options)
    await commit_or_raise(session)

    if created:
        get_metrics().record_job_submitted(process_name)

    return SubmitJobResponse(
        id=job.id,
        process_name=job.process_name,
        status=job.status,
        run_after=job.run_after,
        created_at=job.created_at,
        message="Job created successfully" if created else "Job already exists (idempotent)",
    )


@router.get(
    "/processes/{process_name}/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    process_name: str,
    job_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by composite identity.

    Raises:
        HTTPException: If the job is not found.
    """
    job = await JobRepository(session).get_job(job_id, process_name)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)


@router.get(
    "/processes/{process_name}/jobs",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs of a process name with optional status filtering.",
)
async def list_jobs(
    process_name: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    job_status: JobStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """List jobs of a process name, newest first."""
    jobs, total = await JobRepository(session).list_jobs(
        process_name=process_name,
        status=job_status,
        limit=page_size,
        offset=(page - 1) * page_size,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.get(
    "/jobs/stats",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by status, optionally for one process name.",
)
async def get_job_stats(
    process_name: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """Get job counts by status and the number of jobs eligible right now."""
    repo = JobRepository(session)
    stats = await repo.get_job_stats(process_name=process_name)
    queue_depth = await repo.get_queue_depth(process_name=process_name)

    if process_name is not None:
        get_metrics().update_queue_depth(process_name, queue_depth)

    return JobStatsResponse(stats=stats, queue_depth=queue_depth)
