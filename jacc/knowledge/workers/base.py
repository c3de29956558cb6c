import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from sqlalchemy import text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge.config import settings
from knowledge.models import Job, JobStatus, JobType

logger = logging.getLogger(__name__)

# Atomic claim of the oldest runnable job; PostgreSQL only.
CLAIM_JOB_SQL = text("""
    UPDATE job
    SET status = 'IN_PROGRESS',
        attempts = attempts + 1,
        updated_at = now()
    WHERE id = (
        SELECT id
        FROM job
        WHERE status = 'PENDING'
          AND job_type = :job_type
          AND attempts < :max_attempts
        ORDER BY created_at
        FOR UPDATE SKIP LOCKED
        LIMIT 1
    )
    RETURNING id
""")


class BaseWorker(ABC):
    """
    Polls the job table for one job type.

    A job is attempted up to ``worker_max_attempts`` times. Failures before
    the last attempt put it back to PENDING; the last one marks it FAILED
    and calls ``on_final_failure`` so the subclass can flag its target.
    """

    job_type: JobType

    def __init__(self, session_factory: async_sessionmaker | None = None):
        if session_factory is None:
            from knowledge.db import async_session_factory

            session_factory = async_session_factory
        self.session_factory = session_factory
        self.running = False

    @abstractmethod
    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """Do the work. Raise to fail the attempt."""

    async def on_final_failure(  # noqa: ARG002
        self, session: AsyncSession, job: Job, error: str
    ) -> None:
        """Called inside the failing transaction once attempts are used up."""

    async def claim_job(self, session: AsyncSession) -> Job | None:
        result = await session.execute(
            CLAIM_JOB_SQL,
            {"job_type": self.job_type.value, "max_attempts": settings.worker_max_attempts},
        )
        row = result.fetchone()
        if not row:
            return None

        await session.commit()
        return await session.get(Job, row.id)

    async def release_stale_jobs(self, session: AsyncSession) -> int:
        """
        Requeue jobs left IN_PROGRESS past ``worker_stale_after_seconds``,
        e.g. by a worker that died mid-job. Returns the number requeued.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=settings.worker_stale_after_seconds)
        result = await session.execute(
            update(Job)
            .where(
                Job.job_type == self.job_type,
                Job.status == JobStatus.IN_PROGRESS,
                Job.updated_at < cutoff,
            )
            .values(status=JobStatus.PENDING, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount:
            logger.warning(f"Requeued {result.rowcount} stale {self.job_type.value} jobs")
        return result.rowcount

    async def execute(self, session: AsyncSession, job: Job) -> None:
        """Run one claimed job and record the outcome on it."""
        logger.info(f"Processing job {job.id} (type={job.job_type}, attempt={job.attempts})")
        try:
            await self.process_job(session, job)
        except Exception as e:
            logger.exception(f"Error processing job {job.id}: {e}")
            await session.rollback()
            await session.refresh(job)
            await self._record_failure(session, job, str(e))
            return

        job.status = JobStatus.SUCCEEDED
        job.last_error = None
        job.updated_at = datetime.utcnow()
        await session.commit()
        logger.info(f"Job {job.id} succeeded")

    async def _record_failure(self, session: AsyncSession, job: Job, error: str) -> None:
        job.last_error = error
        job.updated_at = datetime.utcnow()

        if job.attempts < settings.worker_max_attempts:
            job.status = JobStatus.PENDING
            await session.commit()
            logger.warning(f"Job {job.id} failed on attempt {job.attempts}, will retry: {error}")
            return

        job.status = JobStatus.FAILED
        await self.on_final_failure(session, job, error)
        await session.commit()
        logger.error(f"Job {job.id} failed after {job.attempts} attempts: {error}")

    async def run_once(self) -> bool:
        """Claim and run one job; False when the queue is empty."""
        async with self.session_factory() as session:
            job = await self.claim_job(session)
            if job is None:
                return False
            await self.execute(session, job)
            return True

    async def run(self) -> None:
        self.running = True
        logger.info(f"Starting {self.__class__.__name__}")

        async with self.session_factory() as session:
            await self.release_stale_jobs(session)

        while self.running:
            try:
                if not await self.run_once():
                    await asyncio.sleep(settings.worker_poll_interval_seconds)
            except Exception as e:
                logger.exception(f"{self.__class__.__name__} loop error: {e}")
                await asyncio.sleep(settings.worker_poll_interval_seconds)

    def stop(self) -> None:
        self.running = False
        logger.info(f"Stopping {self.__class__.__name__}")
