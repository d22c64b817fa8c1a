"""
Tests for the job repository against PostgreSQL.

Skipped when the test database is unavailable.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pueue.constants import BackoffType, JobStatus
from pueue.db.repository import JobRepository
from pueue.errors import PersistenceError
from pueue.types.job import BackoffOptions, JobOptions
from pueue.utils import utcnow


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def test_create_job_defaults(self, repo: JobRepository, db_session: AsyncSession):
        before = utcnow()

        job, created = await repo.create_job("email", {"to": "a@example.com"})
        await db_session.commit()

        assert created is True
        assert job.id
        assert job.process_name == "email"
        assert job.payload == {"to": "a@example.com"}
        assert job.status == JobStatus.PENDING
        assert job.attempt == 1
        assert job.max_attempts == 3
        assert job.delay == 0
        assert job.backoff == {"delay": 0, "type": "fixed"}
        assert job.log is None
        assert job.run_after >= before

    async def test_create_job_with_options(self, repo: JobRepository, db_session: AsyncSession):
        options = JobOptions(
            id="welcome-1",
            max_attempts=5,
            delay=60_000,
            backoff=BackoffOptions(delay=100, type=BackoffType.LINEAR),
        )

        job, created = await repo.create_job("email", {"n": 1}, options)
        await db_session.commit()

        assert created is True
        assert job.id == "welcome-1"
        assert job.max_attempts == 5
        assert job.backoff == {"delay": 100, "type": "linear"}
        assert job.run_after - job.created_at == timedelta(milliseconds=60_000)

    async def test_create_job_idempotency(self, repo: JobRepository, db_session: AsyncSession):
        """Resubmitting an existing (id, process_name) returns the stored job."""
        job_id = f"test-{uuid4().hex}"

        job1, created1 = await repo.create_job("email", {"v": 1}, JobOptions(id=job_id))
        await db_session.commit()
        job2, created2 = await repo.create_job("email", {"v": 2}, JobOptions(id=job_id))
        await db_session.commit()

        assert created1 is True
        assert created2 is False
        assert job2.id == job1.id
        assert job2.payload == {"v": 1}

    async def test_same_id_in_other_process_is_a_new_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        await repo.create_job("email", {}, JobOptions(id="shared"))
        _, created = await repo.create_job("sms", {}, JobOptions(id="shared"))
        await db_session.commit()

        assert created is True
        assert await repo.get_job("shared", "email") is not None
        assert await repo.get_job("shared", "sms") is not None

    async def test_get_job_not_found(self, repo: JobRepository):
        assert await repo.get_job("missing", "email") is None

    async def test_claim_batch_oldest_first(self, repo: JobRepository, db_session: AsyncSession):
        await repo.create_job("email", {}, JobOptions(id="late"))
        await repo.create_job("email", {}, JobOptions(id="early"))
        await db_session.commit()

        # Make "early" due before "late"
        await repo.mark_retry(
            "early", "email", next_attempt=1, next_run_after=utcnow() - timedelta(minutes=1), log="x"
        )
        await db_session.commit()

        claimed = await repo.claim_batch("email", 10)

        assert [job.id for job in claimed] == ["early", "late"]

    async def test_claim_batch_respects_limit_and_process(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        for i in range(3):
            await repo.create_job("email", {}, JobOptions(id=f"e{i}"))
        await repo.create_job("sms", {}, JobOptions(id="s0"))
        await db_session.commit()

        claimed = await repo.claim_batch("email", 2)

        assert len(claimed) == 2
        assert all(job.process_name == "email" for job in claimed)

    async def test_delayed_job_not_claimable_until_due(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        job, _ = await repo.create_job("email", {}, JobOptions(delay=60_000))
        await db_session.commit()

        assert await repo.claim_batch("email", 10) == []

        later = job.run_after + timedelta(milliseconds=1)
        claimed = await repo.claim_batch("email", 10, now=later)
        assert [c.id for c in claimed] == [job.id]

    async def test_terminal_jobs_not_claimable(self, repo: JobRepository, db_session: AsyncSession):
        for job_id in ("done", "dead", "stopped"):
            await repo.create_job("email", {}, JobOptions(id=job_id))
        await db_session.commit()

        await repo.mark_completed("done", "email")
        await repo.mark_failed("dead", "email", "boom")
        await repo.mark_interrupted("stopped", "email", "cause")
        await db_session.commit()

        assert await repo.claim_batch("email", 10) == []

    async def test_exhausted_attempts_not_claimable(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        await repo.create_job("email", {}, JobOptions(id="j", max_attempts=1))
        await repo.mark_retry("j", "email", next_attempt=2, next_run_after=utcnow(), log="x")
        await db_session.commit()

        assert await repo.claim_batch("email", 10) == []

    async def test_concurrent_claims_are_disjoint(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """A second transaction skips rows locked by the first."""
        for i in range(4):
            await repo.create_job("email", {}, JobOptions(id=f"j{i}"))
        await db_session.commit()

        async with session_factory() as first, session_factory() as second:
            batch1 = await JobRepository(first).claim_batch("email", 2)
            batch2 = await JobRepository(second).claim_batch("email", 10)

            ids1 = {job.id for job in batch1}
            ids2 = {job.id for job in batch2}

            assert len(ids1) == 2
            assert len(ids2) == 2
            assert ids1.isdisjoint(ids2)

            await first.rollback()
            await second.rollback()

    async def test_claim_does_not_modify_rows(self, repo: JobRepository, db_session: AsyncSession):
        job, _ = await repo.create_job("email", {}, JobOptions(id="j"))
        await db_session.commit()

        claimed = await repo.claim_batch("email", 1)
        await db_session.commit()

        stored = await repo.get_job("j", "email")
        assert claimed[0].status == JobStatus.PENDING
        assert stored.attempt == 1
        assert stored.updated_at == job.updated_at

    async def test_mark_retry(self, repo: JobRepository, db_session: AsyncSession):
        await repo.create_job("email", {}, JobOptions(id="j"))
        await db_session.commit()
        run_after = utcnow() + timedelta(seconds=30)

        updated = await repo.mark_retry(
            "j", "email", next_attempt=2, next_run_after=run_after, log="timeout"
        )
        await db_session.commit()
        db_session.expire_all()

        job = await repo.get_job("j", "email")
        assert updated is True
        assert job.status == JobStatus.PENDING
        assert job.attempt == 2
        assert job.run_after == run_after
        assert job.log == "timeout"

    async def test_terminal_rows_are_not_mutated(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        await repo.create_job("email", {}, JobOptions(id="j"))
        await repo.mark_failed("j", "email", "first")
        await db_session.commit()

        assert await repo.mark_completed("j", "email") is False
        assert await repo.mark_retry(
            "j", "email", next_attempt=2, next_run_after=utcnow(), log="second"
        ) is False
        await db_session.commit()
        db_session.expire_all()

        job = await repo.get_job("j", "email")
        assert job.status == JobStatus.FAILED
        assert job.log == "first"

    async def test_list_jobs_and_stats(self, repo: JobRepository, db_session: AsyncSession):
        for i in range(3):
            await repo.create_job("email", {}, JobOptions(id=f"e{i}"))
        await repo.create_job("sms", {}, JobOptions(id="s0"))
        await repo.mark_completed("e0", "email")
        await db_session.commit()

        jobs, total = await repo.list_jobs(process_name="email", status=JobStatus.PENDING)
        assert total == 2
        assert {job.id for job in jobs} == {"e1", "e2"}

        assert await repo.get_job_stats() == {"pending": 3, "completed": 1}
        assert await repo.get_job_stats(process_name="email") == {"pending": 2, "completed": 1}
        assert await repo.get_queue_depth() == 3
        assert await repo.get_queue_depth(process_name="sms") == 1

    async def test_failed_transition_keeps_earlier_ones(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        await repo.create_job("email", {}, JobOptions(id="ok"))
        await repo.create_job("email", {}, JobOptions(id="bad"))
        await db_session.commit()

        await repo.claim_batch("email", 2)
        assert await repo.mark_completed("ok", "email") is True
        with pytest.raises(PersistenceError):
            await repo._transition("bad", "email", max_attempts=None)
        await db_session.commit()
        db_session.expire_all()

        assert (await repo.get_job("ok", "email")).status == JobStatus.COMPLETED
        assert (await repo.get_job("bad", "email")).status == JobStatus.PENDING
