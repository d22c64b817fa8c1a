"""
Type definitions for the job queue.
Contains input/output type definitions grouped by module.
"""

from pueue.types.api import (
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    SubmitJobRequest,
    SubmitJobResponse,
)
from pueue.types.job import (
    BackoffOptions,
    ClaimedJob,
    EventListener,
    JobHandler,
    JobOptions,
    ProcessRegistration,
)

__all__ = [
    # API types
    "SubmitJobRequest",
    "SubmitJobResponse",
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "HealthResponse",
    # Job types
    "BackoffOptions",
    "JobOptions",
    "ClaimedJob",
    "ProcessRegistration",
    "JobHandler",
    "EventListener",
]
