"""
Job-related type definitions for internal use.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pueue.constants import (
    DEFAULT_BACKOFF_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_DELAY_MS,
    BackoffType,
    JobStatus,
)

if TYPE_CHECKING:
    from pueue.db.models import Job


class BackoffOptions(BaseModel):
    """
    Backoff applied between a failed attempt and the next one.

    A bare integer is accepted as shorthand for a fixed backoff of that
    many milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    delay: int = DEFAULT_BACKOFF_DELAY_MS
    type: BackoffType = BackoffType.FIXED

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, bool):
            raise ValueError("backoff must be an integer or a mapping")
        if isinstance(data, int):
            return {"delay": data, "type": BackoffType.FIXED}
        return data


class JobOptions(BaseModel):
    """Options accepted when submitting a job."""

    id: str | None = Field(default=None, min_length=1, max_length=255)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    delay: int = Field(default=DEFAULT_DELAY_MS, ge=0, description="Initial delay in ms")
    backoff: BackoffOptions = Field(default_factory=BackoffOptions)

    @model_validator(mode="before")
    @classmethod
    def _default_backoff(cls, data: Any) -> Any:
        # An explicit None means "use the default backoff"
        if isinstance(data, dict) and data.get("backoff") is None:
            data = {k: v for k, v in data.items() if k != "backoff"}
        return data


@dataclass
class ClaimedJob:
    """
    A job handed to a handler during a dispatch round.

    Handlers read the payload and may call interrupt() to end the job
    early. After the round records the outcome, the fields reflect what
    was written to the store.
    """

    id: str
    process_name: str
    payload: Any
    status: JobStatus
    attempt: int
    max_attempts: int
    backoff: BackoffOptions
    run_after: datetime
    created_at: datetime
    updated_at: datetime
    delay: int = 0
    log: str | None = None

    def interrupt(self, cause: str | None = None) -> None:
        """Mark the job as voluntarily interrupted; it will not be retried."""
        self.status = JobStatus.INTERRUPTED
        self.log = cause

    @property
    def is_interrupted(self) -> bool:
        return self.status == JobStatus.INTERRUPTED

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last allowed attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining attempts after the current one."""
        return max(0, self.max_attempts - self.attempt)

    @classmethod
    def from_model(cls, job: "Job") -> "ClaimedJob":
        """Build a detached copy of a stored job row."""
        return cls(
            id=job.id,
            process_name=job.process_name,
            payload=job.payload,
            status=JobStatus(job.status),
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            backoff=BackoffOptions.model_validate(job.backoff),
            run_after=job.run_after,
            created_at=job.created_at,
            updated_at=job.updated_at,
            delay=job.delay,
            log=job.log,
        )


# Type alias for job handler functions
JobHandler = Callable[[ClaimedJob], Awaitable[Any]]

# Listeners may be plain functions or coroutine functions
EventListener = Callable[[ClaimedJob], Any]


@dataclass
class ProcessRegistration:
    """
    A handler bound to a process name, with its polling options.

    Attributes:
        process_name: Queue the handler consumes.
        handler: Coroutine function called once per claimed job.
        concurrency: Handlers run in parallel per chunk.
        batch_size: Jobs claimed per round (raised to concurrency if lower).
        delay: Milliseconds to wait between rounds.
    """

    process_name: str
    handler: JobHandler
    concurrency: int = DEFAULT_CONCURRENCY
    batch_size: int = DEFAULT_BATCH_SIZE
    delay: int = DEFAULT_POLL_DELAY_MS

    def __post_init__(self) -> None:
        if not self.process_name:
            raise ValueError("process_name must not be empty")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")
