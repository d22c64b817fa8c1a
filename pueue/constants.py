"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> COMPLETED (handler succeeded)
    - PENDING -> INTERRUPTED (handler called job.interrupt())
    - PENDING -> FAILED (handler raised on the last attempt)
    - PENDING -> PENDING (handler raised, attempt += 1, run_after pushed back)

    PENDING is the only claimable state; the other three are terminal.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class BackoffType(StrEnum):
    """Spacing strategy between retries."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class QueueEvent(StrEnum):
    """Lifecycle events published to listeners."""

    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    ERROR = "error"


# Database
DB_SCHEMA = "pueue"
JOB_TABLE = "job"
SCHEMA_VERSION_TABLE = "pueue_schema_version"

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_MS = 0
DEFAULT_BACKOFF_DELAY_MS = 0
DEFAULT_CONCURRENCY = 1
DEFAULT_BATCH_SIZE = 1
DEFAULT_POLL_DELAY_MS = 2000

# Upper bound applied when turning a backoff delay into a timestamp
MAX_BACKOFF_DELAY_MS = 365 * 24 * 60 * 60 * 1000

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "pueue_queue_depth"
METRIC_JOBS_SUBMITTED = "pueue_jobs_submitted_total"
METRIC_JOBS_CLAIMED = "pueue_jobs_claimed_total"
METRIC_JOBS_PROCESSED = "pueue_jobs_processed_total"
METRIC_JOB_DURATION = "pueue_job_duration_seconds"
METRIC_DISPATCH_ROUNDS = "pueue_dispatch_rounds_total"
METRIC_LISTENER_ERRORS = "pueue_listener_errors_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_DISPATCH_ROUND = "dispatch_round"
SPAN_CLAIM_BATCH = "claim_batch"
SPAN_EXECUTE_JOB = "execute_job"
