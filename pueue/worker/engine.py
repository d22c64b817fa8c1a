"""
Dispatch engine.

One call to DispatchEngine.process() is one round for one process name:
claim a batch under row locks, run the handler over it in chunks of
`concurrency`, record each outcome, publish events, and commit. The whole
round is one transaction, so claimed rows stay locked until their updates
are committed.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pueue.backoff import next_run_after
from pueue.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    SPAN_CLAIM_BATCH,
    SPAN_DISPATCH_ROUND,
    SPAN_EXECUTE_JOB,
    JobStatus,
    QueueEvent,
)
from pueue.db.connection import rollback_quietly
from pueue.db.repository import JobRepository
from pueue.errors import PersistenceError
from pueue.events import EventBus
from pueue.observability.logging import log_context
from pueue.observability.metrics import MetricsCollector, get_metrics
from pueue.observability.tracing import get_tracer
from pueue.types.job import ClaimedJob, JobHandler
from pueue.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class _Round:
    """State shared by the jobs of one round."""

    process_name: str
    handler: JobHandler
    repository: JobRepository
    # One session backs the round; its statements must not interleave
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    recorded: int = 0


class DispatchEngine:
    """
    Runs dispatch rounds against the job store.

    Features:
    - Batch claiming with FOR UPDATE SKIP LOCKED, so concurrent engines
      (in this or other processes) never claim the same job
    - Bounded parallelism: handlers run in chunks of `concurrency`
    - Per-job isolation: a handler error only affects its own job
    - Retry with backoff until max_attempts, then terminal failure
    - Lifecycle events through an EventBus
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        event_bus: EventBus | None = None,
        *,
        repository_factory: Callable[[AsyncSession], JobRepository] = JobRepository,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the engine.

        Args:
            session_factory: Creates the session (and transaction) for a round.
            event_bus: Bus receiving lifecycle events. A new one is created if omitted.
            repository_factory: Builds the job store over a session.
            metrics: Metrics collector. Defaults to the global one.
            clock: Source of the current time.
        """
        self._session_factory = session_factory
        self._repository_factory = repository_factory
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self.event_bus = event_bus or EventBus(self._metrics)

    async def process(
        self,
        process_name: str,
        handler: JobHandler,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stop_event: asyncio.Event | None = None,
    ) -> int:
        """
        Run one round of work for a process name.

        Errors while claiming or recording outcomes are logged and end the
        round early; the transaction is still committed so claimed rows are
        unlocked. Handler errors never escape.

        Args:
            process_name: The process name to work on.
            handler: Coroutine function called with each claimed job.
            concurrency: Maximum handlers running at once.
            batch_size: Jobs to claim; raised to `concurrency` if lower.
            stop_event: When set, the round stops at the next chunk boundary
                and leaves the rest of the batch pending.

        Returns:
            Number of jobs whose outcome was recorded.

        Raises:
            ValueError: If concurrency is less than 1.
            PersistenceError: If the round's transaction cannot be committed.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if batch_size < concurrency:
            batch_size = concurrency

        tracer = get_tracer()

        with log_context(process_name=process_name), tracer.start_as_current_span(
            SPAN_DISPATCH_ROUND
        ) as span:
            span.set_attribute("process_name", process_name)
            span.set_attribute("batch_size", batch_size)

            async with self._session_factory() as session:
                round_ = _Round(
                    process_name=process_name,
                    handler=handler,
                    repository=self._repository_factory(session),
                )
                try:
                    with tracer.start_as_current_span(SPAN_CLAIM_BATCH):
                        jobs = await round_.repository.claim_batch(
                            process_name, batch_size, now=self._clock()
                        )

                    if not jobs:
                        self._metrics.record_round(process_name, "empty")
                        return 0

                    self._metrics.record_jobs_claimed(process_name, len(jobs))
                    span.set_attribute("job_count", len(jobs))

                    await self._run_chunks(round_, jobs, concurrency, stop_event)
                    self._metrics.record_round(process_name, "processed")

                except Exception as e:
                    self._metrics.record_round(process_name, "error")
                    logger.exception(
                        f"Error on processing {process_name}: {e}",
                        extra={"process_name": process_name}
                    )

                finally:
                    await self._commit(session, process_name)

        return round_.recorded

    async def _run_chunks(
        self,
        round_: _Round,
        jobs: list[ClaimedJob],
        concurrency: int,
        stop_event: asyncio.Event | None,
    ) -> None:
        """Execute jobs chunk by chunk, waiting for each chunk to finish."""
        for start in range(0, len(jobs), concurrency):
            if stop_event is not None and stop_event.is_set():
                logger.info(
                    "Stop requested, leaving remaining claimed jobs pending",
                    extra={
                        "process_name": round_.process_name,
                        "remaining": len(jobs) - start,
                    }
                )
                return

            chunk = jobs[start:start + concurrency]
            results = await asyncio.gather(
                *(self._execute(round_, job) for job in chunk),
                return_exceptions=True,
            )

            # Only store failures get here; handler errors are settled per job
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                if len(errors) > 1:
                    logger.error(
                        f"{len(errors)} job outcomes could not be recorded",
                        extra={"process_name": round_.process_name}
                    )
                raise errors[0]

    async def _execute(self, round_: _Round, job: ClaimedJob) -> None:
        """Run the handler for one job and record the outcome."""
        started = time.monotonic()

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("process_name", job.process_name)
            span.set_attribute("attempt", job.attempt)

            try:
                await round_.handler(job)
            except asyncio.CancelledError as e:
                # Only cancellation of this task propagates; a handler raising it has failed
                if asyncio.current_task().cancelling():
                    raise
                span.record_exception(e)
                error = str(e) or e.__class__.__name__
                await self._settle_failure(round_, job, error, time.monotonic() - started)
            except Exception as e:
                span.record_exception(e)
                error = str(e) or e.__class__.__name__
                await self._settle_failure(round_, job, error, time.monotonic() - started)
            else:
                await self._settle_success(round_, job, time.monotonic() - started)

    async def _settle_success(self, round_: _Round, job: ClaimedJob, duration: float) -> None:
        """Record a handler that returned: completed, or interrupted by request."""
        repo = round_.repository

        if job.is_interrupted:
            async with round_.lock:
                updated = await repo.mark_interrupted(job.id, job.process_name, job.log)
            if not updated:
                return

            logger.info(
                "Job interrupted",
                extra={"job_id": job.id, "process_name": job.process_name, "cause": job.log}
            )
            await self._finish(round_, job, JobStatus.INTERRUPTED, QueueEvent.INTERRUPTED, duration)
            return

        async with round_.lock:
            updated = await repo.mark_completed(job.id, job.process_name)
        if not updated:
            return

        job.status = JobStatus.COMPLETED
        logger.info(
            "Job completed successfully",
            extra={
                "job_id": job.id,
                "process_name": job.process_name,
                "duration": f"{duration:.2f}s",
            }
        )
        await self._finish(round_, job, JobStatus.COMPLETED, QueueEvent.COMPLETED, duration)

    async def _settle_failure(
        self,
        round_: _Round,
        job: ClaimedJob,
        error: str,
        duration: float,
    ) -> None:
        """Record a handler that raised: retry with backoff, or fail for good."""
        repo = round_.repository

        if job.is_last_attempt:
            async with round_.lock:
                updated = await repo.mark_failed(job.id, job.process_name, error)
            if not updated:
                return

            job.status = JobStatus.FAILED
            job.log = error
            logger.error(
                f"Job failed after {job.attempt} attempts",
                extra={"job_id": job.id, "process_name": job.process_name, "error": error}
            )
            await self._finish(round_, job, JobStatus.FAILED, QueueEvent.FAILED, duration)
            return

        run_after = next_run_after(self._clock(), job.backoff, job.attempt)
        async with round_.lock:
            updated = await repo.mark_retry(
                job.id,
                job.process_name,
                next_attempt=job.attempt + 1,
                next_run_after=run_after,
                log=error,
            )
        if not updated:
            return

        logger.warning(
            f"Attempt {job.attempt} failed, job queued for retry",
            extra={
                "job_id": job.id,
                "process_name": job.process_name,
                "error": error,
                "run_after": run_after.isoformat(),
            }
        )
        job.status = JobStatus.PENDING
        job.attempt += 1
        job.run_after = run_after
        job.log = error
        await self._finish(round_, job, "retried", QueueEvent.ERROR, duration)

    async def _finish(
        self,
        round_: _Round,
        job: ClaimedJob,
        outcome: str,
        event: QueueEvent,
        duration: float,
    ) -> None:
        round_.recorded += 1
        job.updated_at = self._clock()
        self._metrics.record_job_processed(round_.process_name, outcome, duration)
        await self.event_bus.publish(round_.process_name, event, job)

    async def _commit(self, session: AsyncSession, process_name: str) -> None:
        """Commit the round, releasing its row locks."""
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await rollback_quietly(session)
            raise PersistenceError(
                f"Could not commit round for {process_name}: {e}"
            ) from e
