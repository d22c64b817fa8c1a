"""
Job repository for database operations.
Implements the claim/lock protocol and the job state transitions.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pueue.constants import JobStatus
from pueue.db.models import Job, new_job_id
from pueue.errors import PersistenceError
from pueue.types.job import ClaimedJob, JobOptions
from pueue.utils import after_ms, utcnow

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise SQLAlchemy errors as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Idempotent job creation keyed by (id, process_name)
    - Batch claiming with FOR UPDATE SKIP LOCKED
    - Conditional status transitions on pending jobs

    All methods run inside the session's current transaction; the caller
    owns commit and rollback. Claim locks are held until that transaction
    ends.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        process_name: str,
        payload: Any,
        options: JobOptions | None = None,
    ) -> tuple[Job, bool]:
        """
        Create a new pending job.

        Uses INSERT ... ON CONFLICT DO NOTHING so that resubmitting a job
        with the same id leaves the existing row untouched.

        Args:
            process_name: The process name whose handler will consume the job.
            payload: Data passed to the handler verbatim.
            options: Submission options (id, max_attempts, delay, backoff).

        Returns:
            Tuple of (Job, created) where created is True if a new job was created.
        """
        options = options or JobOptions()
        now = utcnow()

        job_id = options.id or new_job_id()

        values: dict[str, Any] = {
            "id": job_id,
            "process_name": process_name,
            "payload": payload,
            "status": JobStatus.PENDING,
            "attempt": 1,
            "max_attempts": options.max_attempts,
            "delay": options.delay,
            "backoff": options.backoff.model_dump(mode="json"),
            "run_after": after_ms(now, options.delay),
            "created_at": now,
            "updated_at": now,
        }
        stmt = (
            insert(Job)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["id", "process_name"])
            .returning(Job)
        )

        with _translate_errors("Creating job"):
            result = await self._session.execute(stmt)
            job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Created new job",
                extra={"job_id": job.id, "process_name": process_name}
            )
            return job, True

        existing = await self.get_job(job_id, process_name)
        if existing is None:
            raise PersistenceError("Job should exist after conflict")

        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": existing.id, "process_name": process_name}
        )
        return existing, False

    async def get_job(self, job_id: str, process_name: str) -> Job | None:
        """
        Get a job by its composite identity.

        Args:
            job_id: The job id.
            process_name: The job's process name.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(
            and_(Job.id == job_id, Job.process_name == process_name)
        )
        with _translate_errors("Loading job"):
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_jobs(
        self,
        process_name: str | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs with optional filtering, newest first.

        Args:
            process_name: Optional process name filter.
            status: Optional status filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if process_name is not None:
            filters.append(Job.process_name == process_name)
        if status is not None:
            filters.append(Job.status == status)

        count_stmt = select(func.count()).select_from(Job).where(*filters)
        stmt = (
            select(Job)
            .where(*filters)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )

        with _translate_errors("Listing jobs"):
            total = (await self._session.execute(count_stmt)).scalar() or 0
            jobs = (await self._session.execute(stmt)).scalars().all()

        return jobs, total

    async def claim_batch(
        self,
        process_name: str,
        batch_size: int,
        now: datetime | None = None,
    ) -> list[ClaimedJob]:
        """
        Lock a batch of eligible jobs using FOR UPDATE SKIP LOCKED.

        This is the critical path for job distribution. Rows locked by a
        concurrent claim are skipped rather than waited on, so concurrent
        callers get disjoint batches. Rows are not modified; the locks are
        held until the session's transaction ends.

        Args:
            process_name: The process name to claim for.
            batch_size: Maximum number of jobs to claim.
            now: Eligibility cut-off; defaults to the current time.

        Returns:
            Claimed jobs, oldest run_after first. Empty if none are eligible.
        """
        now = now or utcnow()

        stmt = (
            select(Job)
            .where(
                and_(
                    Job.status == JobStatus.PENDING,
                    Job.process_name == process_name,
                    Job.run_after <= now,
                    Job.attempt <= Job.max_attempts,
                )
            )
            .order_by(Job.run_after.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

        with _translate_errors("Claiming jobs"):
            result = await self._session.execute(stmt)
            rows = result.scalars().all()

        if rows:
            logger.info(
                f"Claimed {len(rows)} jobs",
                extra={"process_name": process_name, "job_count": len(rows)}
            )

        return [ClaimedJob.from_model(row) for row in rows]

    async def mark_completed(self, job_id: str, process_name: str) -> bool:
        """
        Mark a pending job as completed.

        Returns:
            True if the job was updated.
        """
        return await self._transition(
            job_id,
            process_name,
            status=JobStatus.COMPLETED,
        )

    async def mark_interrupted(
        self,
        job_id: str,
        process_name: str,
        log: str | None,
    ) -> bool:
        """
        Mark a pending job as interrupted with the handler's cause.

        Returns:
            True if the job was updated.
        """
        return await self._transition(
            job_id,
            process_name,
            status=JobStatus.INTERRUPTED,
            log=log,
        )

    async def mark_failed(self, job_id: str, process_name: str, log: str) -> bool:
        """
        Mark a pending job as terminally failed.

        Returns:
            True if the job was updated.
        """
        return await self._transition(
            job_id,
            process_name,
            status=JobStatus.FAILED,
            log=log,
        )

    async def mark_retry(
        self,
        job_id: str,
        process_name: str,
        next_attempt: int,
        next_run_after: datetime,
        log: str,
    ) -> bool:
        """
        Keep a job pending for another attempt.

        Args:
            job_id: The job id.
            process_name: The job's process name.
            next_attempt: The incremented attempt counter.
            next_run_after: When the job becomes eligible again.
            log: The error from the failed attempt.

        Returns:
            True if the job was updated.
        """
        return await self._transition(
            job_id,
            process_name,
            attempt=next_attempt,
            run_after=next_run_after,
            log=log,
        )

    async def _transition(self, job_id: str, process_name: str, **values: Any) -> bool:
        """
        Apply an update to a pending job, refreshing updated_at.

        The update runs in a SAVEPOINT, so a failed statement rolls back only
        itself and the transitions already recorded in the transaction survive.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.process_name == process_name,
                    Job.status == JobStatus.PENDING,
                )
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )

        with _translate_errors("Updating job"):
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                "Job transition matched no pending job",
                extra={"job_id": job_id, "process_name": process_name}
            )
            return False
        return True

    async def get_queue_depth(
        self,
        process_name: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Get the number of jobs eligible for claiming right now.

        Args:
            process_name: Optional process name filter.
            now: Eligibility cut-off; defaults to the current time.

        Returns:
            Number of eligible jobs.
        """
        filters = [
            Job.status == JobStatus.PENDING,
            Job.run_after <= (now or utcnow()),
            Job.attempt <= Job.max_attempts,
        ]
        if process_name is not None:
            filters.append(Job.process_name == process_name)

        stmt = select(func.count()).select_from(Job).where(and_(*filters))
        with _translate_errors("Counting jobs"):
            result = await self._session.execute(stmt)
            return result.scalar() or 0

    async def get_job_stats(
        self,
        process_name: str | None = None,
    ) -> dict[str, int]:
        """
        Get job counts by status.

        Args:
            process_name: Optional process name filter.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        if process_name is not None:
            stmt = stmt.where(Job.process_name == process_name)

        with _translate_errors("Counting jobs"):
            result = await self._session.execute(stmt)
            return {JobStatus(status).value: count for status, count in result.all()}
