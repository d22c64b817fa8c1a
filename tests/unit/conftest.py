"""
In-memory stand-ins for the job store and session used by unit tests.
"""

import dataclasses
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from pueue.constants import JobStatus
from pueue.errors import PersistenceError
from pueue.events import EventBus
from pueue.observability.metrics import MetricsCollector
from pueue.types.job import BackoffOptions, ClaimedJob
from pueue.worker.engine import DispatchEngine


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += timedelta(milliseconds=milliseconds)


class FakeSession:
    """Records commits and rollbacks of a round's transaction."""

    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0
        self.fail_commit = False

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed += 1

    async def commit(self) -> None:
        if self.fail_commit:
            raise OperationalError("COMMIT", {}, Exception("connection lost"))
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class InMemoryJobStore:
    """
    Dict-backed job store with the JobRepository claim/transition API.

    Claimed jobs are handed out as copies, like rows loaded from a database.
    """

    def __init__(self, clock: FrozenClock):
        self._clock = clock
        self.jobs: dict[tuple[str, str], ClaimedJob] = {}
        self.claims: list[tuple[str, int]] = []
        self.fail_claim = False
        self.fail_updates = False

    def add(
        self,
        process_name: str,
        job_id: str,
        *,
        payload: Any = None,
        attempt: int = 1,
        max_attempts: int = 3,
        backoff: BackoffOptions | int | None = None,
        delay: int = 0,
        status: JobStatus = JobStatus.PENDING,
    ) -> ClaimedJob:
        now = self._clock()
        job = ClaimedJob(
            id=job_id,
            process_name=process_name,
            payload=payload if payload is not None else {},
            status=status,
            attempt=attempt,
            max_attempts=max_attempts,
            backoff=BackoffOptions.model_validate(backoff),
            run_after=now + timedelta(milliseconds=delay),
            created_at=now,
            updated_at=now,
            delay=delay,
        )
        self.jobs[(job_id, process_name)] = job
        return job

    def get(self, process_name: str, job_id: str) -> ClaimedJob:
        return self.jobs[(job_id, process_name)]

    async def claim_batch(
        self,
        process_name: str,
        batch_size: int,
        now: datetime | None = None,
    ) -> list[ClaimedJob]:
        self.claims.append((process_name, batch_size))
        if self.fail_claim:
            raise PersistenceError("Claiming jobs failed: connection refused")

        now = now or self._clock()
        eligible = sorted(
            (
                job for job in self.jobs.values()
                if job.process_name == process_name
                and job.status == JobStatus.PENDING
                and job.run_after <= now
                and job.attempt <= job.max_attempts
            ),
            key=lambda job: job.run_after,
        )
        return [dataclasses.replace(job) for job in eligible[:batch_size]]

    async def mark_completed(self, job_id: str, process_name: str) -> bool:
        return self._update(job_id, process_name, status=JobStatus.COMPLETED)

    async def mark_interrupted(self, job_id: str, process_name: str, log: str | None) -> bool:
        return self._update(job_id, process_name, status=JobStatus.INTERRUPTED, log=log)

    async def mark_failed(self, job_id: str, process_name: str, log: str) -> bool:
        return self._update(job_id, process_name, status=JobStatus.FAILED, log=log)

    async def mark_retry(
        self,
        job_id: str,
        process_name: str,
        next_attempt: int,
        next_run_after: datetime,
        log: str,
    ) -> bool:
        return self._update(
            job_id,
            process_name,
            attempt=next_attempt,
            run_after=next_run_after,
            log=log,
        )

    def _update(self, job_id: str, process_name: str, **values: Any) -> bool:
        if self.fail_updates:
            raise PersistenceError("Updating job failed: connection reset")
        job = self.jobs.get((job_id, process_name))
        if job is None or job.status != JobStatus.PENDING:
            return False
        for name, value in values.items():
            setattr(job, name, value)
        job.updated_at = self._clock()
        return True


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryJobStore:
    return InMemoryJobStore(clock)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def event_bus(metrics: MetricsCollector) -> EventBus:
    return EventBus(metrics)


@pytest.fixture
def engine(
    store: InMemoryJobStore,
    fake_session: FakeSession,
    event_bus: EventBus,
    metrics: MetricsCollector,
    clock: FrozenClock,
) -> DispatchEngine:
    return DispatchEngine(
        lambda: fake_session,
        event_bus,
        repository_factory=lambda session: store,
        metrics=metrics,
        clock=clock,
    )
