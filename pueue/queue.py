"""
Producer API for enqueueing jobs.
"""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from pueue.config import get_settings
from pueue.constants import SPAN_SUBMIT_JOB
from pueue.db.connection import get_session_context
from pueue.db.models import Job
from pueue.db.repository import JobRepository
from pueue.observability.metrics import MetricsCollector, get_metrics
from pueue.observability.tracing import get_tracer
from pueue.types.job import BackoffOptions, JobOptions

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Enqueues jobs for workers to pick up.

    Example:
        queue = JobQueue(session_factory)
        job_id = await queue.submit("email", {"to": "a@example.com"}, backoff=500)
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Args:
            session_factory: Session factory to use. Defaults to the one
                created by init_db().
            metrics: Metrics collector. Defaults to the global one.
        """
        self._session_factory = session_factory
        self._metrics = metrics or get_metrics()

    async def submit(
        self,
        process_name: str,
        payload: Any,
        *,
        job_id: str | None = None,
        max_attempts: int | None = None,
        delay: int = 0,
        backoff: int | BackoffOptions | dict[str, Any] | None = None,
    ) -> str:
        """
        Submit a job.

        Args:
            process_name: Process name whose handler consumes the job.
            payload: Data handed to the handler.
            job_id: Optional job id; resubmitting an existing (id, process_name)
                is a no-op.
            max_attempts: Attempts before the job fails for good (default 3).
            delay: Milliseconds before the job first becomes eligible.
            backoff: Retry spacing. An int is a fixed delay in milliseconds.

        Returns:
            The job id.

        Raises:
            pydantic.ValidationError: If the options are invalid.
            PersistenceError: If the job could not be stored.
        """
        options = JobOptions(
            id=job_id,
            max_attempts=(
                max_attempts if max_attempts is not None else get_settings().default_max_attempts
            ),
            delay=delay,
            backoff=backoff,
        )

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            span.set_attribute("process_name", process_name)

            async with get_session_context(self._session_factory) as session:
                job, created = await JobRepository(session).create_job(
                    process_name, payload, options
                )

            span.set_attribute("job_id", job.id)

        if created:
            self._metrics.record_job_submitted(process_name)

        return job.id

    async def get(self, process_name: str, job_id: str) -> Job | None:
        """Load a job by its composite identity."""
        async with get_session_context(self._session_factory) as session:
            return await JobRepository(session).get_job(job_id, process_name)
