"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pueue.constants import DEFAULT_MAX_ATTEMPTS, JobStatus
from pueue.types.job import BackoffOptions


class SubmitJobRequest(BaseModel):
    """Request body for submitting a job."""

    payload: Any = Field(default_factory=dict, description="Data passed to the handler")
    id: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Optional job id; resubmitting an existing id is a no-op",
    )
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, description="Maximum attempts")
    delay: int = Field(default=0, ge=0, description="Milliseconds before the job is eligible")
    backoff: int | BackoffOptions | None = Field(
        default=None,
        description="Retry backoff; an integer is a fixed delay in milliseconds",
    )


class SubmitJobResponse(BaseModel):
    """Response body after submitting a job."""

    id: str
    process_name: str
    status: JobStatus
    run_after: datetime
    created_at: datetime
    message: str = "Job created successfully"


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    process_name: str
    payload: Any
    status: JobStatus
    log: str | None
    attempt: int
    max_attempts: int
    delay: int
    backoff: BackoffOptions
    run_after: datetime
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts by status."""

    stats: dict[str, int]
    queue_depth: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
