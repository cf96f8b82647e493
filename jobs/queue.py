# jobs/queue.py
"""
SQL-backed queue store (PostgreSQL in production, SQLite in tests).

Claims pick candidates with SELECT ... FOR UPDATE SKIP LOCKED and then
flip them with a compare-and-swap UPDATE on the attempt counter, so two
workers can never lease the same job even where row locks are unavailable.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.envelope import JobEnvelope, JobKind, JobState, as_utc, utcnow
from jobs.errors import DuplicateJob, FailureKind, JobNotFound, LeaseConflict
from jobs.store import CANCELLED_ERROR, LEASE_EXHAUSTED_ERROR
from models.job import Job
from services.observability import log_event

logger = logging.getLogger(__name__)

NON_TERMINAL = (JobState.QUEUED.value, JobState.LEASED.value)


def _claimable(now: datetime):
    return and_(
        Job.attempt < Job.max_attempts,
        or_(
            # ready queued jobs
            and_(
                Job.state == JobState.QUEUED.value,
                Job.visible_at <= now,
            ),
            # abandoned leases
            and_(
                Job.state == JobState.LEASED.value,
                Job.lease_expires_at <= now,
            ),
        ),
    )


def to_envelope(row: Job) -> JobEnvelope:
    return JobEnvelope(
        id=row.id,
        kind=JobKind(row.kind),
        payload=row.payload or {},
        owner_id=row.owner_id,
        state=JobState(row.state),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        visible_at=as_utc(row.visible_at),
        lease_owner=row.lease_owner,
        lease_expires_at=as_utc(row.lease_expires_at),
        result=row.result,
        error_info=row.error_info,
        last_failure_kind=FailureKind(row.last_failure_kind) if row.last_failure_kind else None,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def to_row(job: JobEnvelope) -> Job:
    return Job(
        id=job.id,
        kind=job.kind.value,
        owner_id=job.owner_id,
        state=job.state.value,
        payload=job.payload,
        result=job.result,
        error_info=job.error_info,
        last_failure_kind=job.last_failure_kind.value if job.last_failure_kind else None,
        attempt=job.attempt,
        max_attempts=job.max_attempts,
        visible_at=job.visible_at,
        lease_owner=job.lease_owner,
        lease_expires_at=job.lease_expires_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class SqlQueueStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
        claim_batch: int = 5,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._claim_batch = claim_batch

    async def _require(self, db: AsyncSession, job_id: uuid.UUID) -> Job:
        row = await db.get(Job, job_id)
        if row is None:
            raise JobNotFound(job_id)
        return row

    async def enqueue(self, job: JobEnvelope) -> uuid.UUID:
        async with self._session_factory() as db:
            db.add(to_row(job))
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise DuplicateJob(job.id) from exc

        logger.info("Enqueued job %s [%s] owner=%s", job.id, job.kind.value, job.owner_id)
        return job.id

    async def claim_next(self, worker_id: str, lease_duration: timedelta) -> JobEnvelope | None:
        """
        Claims the oldest ready job. Also recovers expired leases, and
        dead-letters the ones that expired on their final attempt.
        """
        now = self._clock()

        async with self._session_factory() as db:
            async with db.begin():
                await self._dead_letter_exhausted(db, now)

                stmt = (
                    select(Job.id, Job.attempt)
                    .where(_claimable(now))
                    .order_by(Job.visible_at.asc(), Job.created_at.asc())
                    .limit(self._claim_batch)
                    .with_for_update(skip_locked=True)
                )
                candidates = (await db.execute(stmt)).all()

                for job_id, seen_attempt in candidates:
                    try:
                        row = await self._try_claim(db, job_id, seen_attempt, worker_id, now, lease_duration)
                    except LeaseConflict:
                        logger.debug("Lease conflict on job %s for worker %s", job_id, worker_id)
                        continue

                    logger.info(
                        "Worker %s claimed job %s [%s] attempt %d/%d",
                        worker_id, row.id, row.kind, row.attempt, row.max_attempts,
                    )
                    return to_envelope(row)

        return None

    async def _try_claim(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        seen_attempt: int,
        worker_id: str,
        now: datetime,
        lease_duration: timedelta,
    ) -> Job:
        """Raises LeaseConflict when the job moved on since it was selected."""
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.attempt == seen_attempt,
                _claimable(now),
            )
            .values(
                state=JobState.LEASED.value,
                lease_owner=worker_id,
                lease_expires_at=now + lease_duration,
                attempt=Job.attempt + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            raise LeaseConflict(f"Job {job_id} no longer at attempt {seen_attempt}")
        return await db.get(Job, job_id, populate_existing=True)

    async def _dead_letter_exhausted(self, db: AsyncSession, now: datetime) -> None:
        stmt = (
            select(Job.id)
            .where(
                Job.state == JobState.LEASED.value,
                Job.lease_expires_at <= now,
                Job.attempt >= Job.max_attempts,
            )
            .with_for_update(skip_locked=True)
        )
        job_ids = list((await db.execute(stmt)).scalars())
        if not job_ids:
            return

        await db.execute(
            update(Job)
            .where(Job.id.in_(job_ids), Job.state == JobState.LEASED.value)
            .values(
                state=JobState.DEAD_LETTERED.value,
                error_info=func.coalesce(Job.error_info, LEASE_EXHAUSTED_ERROR),
                lease_owner=None,
                lease_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        for job_id in job_ids:
            await log_event(
                db,
                "job_dead_lettered",
                "error",
                source="queue",
                message=LEASE_EXHAUSTED_ERROR,
                job_id=job_id,
            )

    async def complete(self, job_id: uuid.UUID, result: dict) -> bool:
        now = self._clock()

        async with self._session_factory() as db:
            async with db.begin():
                stmt = (
                    update(Job)
                    .where(Job.id == job_id, Job.state.in_(NON_TERMINAL))
                    .values(
                        state=JobState.SUCCEEDED.value,
                        result=result,
                        lease_owner=None,
                        lease_expires_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if (await db.execute(stmt)).rowcount == 0:
                    row = await self._require(db, job_id)
                    logger.info("Job %s already %s, complete ignored", job_id, row.state)
                    return False

        logger.info("Job %s completed", job_id)
        return True

    async def fail(
        self,
        job_id: uuid.UUID,
        error_info: str,
        next_visible_at: datetime | None,
        *,
        failure_kind: FailureKind | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """
        Re-queues the job at next_visible_at, or dead-letters it when there
        is no next attempt. No sleeping here.
        """
        now = self._clock()

        conditions = [Job.id == job_id, Job.state.in_(NON_TERMINAL)]
        if worker_id is not None:
            conditions.append(Job.lease_owner == worker_id)

        values = dict(
            error_info=error_info,
            last_failure_kind=failure_kind.value if failure_kind else None,
            lease_owner=None,
            lease_expires_at=None,
            updated_at=now,
        )
        if next_visible_at is not None:
            values.update(state=JobState.QUEUED.value, visible_at=next_visible_at)
        else:
            values.update(state=JobState.DEAD_LETTERED.value)

        async with self._session_factory() as db:
            async with db.begin():
                stmt = (
                    update(Job)
                    .where(*conditions)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if (await db.execute(stmt)).rowcount == 0:
                    row = await self._require(db, job_id)
                    logger.warning(
                        "Job %s fail ignored (state=%s lease_owner=%s worker=%s)",
                        job_id, row.state, row.lease_owner, worker_id,
                    )
                    return False

                if next_visible_at is None:
                    await log_event(
                        db,
                        "job_dead_lettered",
                        "error",
                        source="worker",
                        message=error_info,
                        job_id=job_id,
                        metadata={
                            "failure_kind": failure_kind.value if failure_kind else None,
                            "worker_id": worker_id,
                        },
                    )

        if next_visible_at is None:
            logger.error("Job %s dead-lettered: %s", job_id, error_info)
        else:
            logger.warning("Job %s re-queued, visible at %s", job_id, next_visible_at.isoformat())
        return True

    async def get(self, job_id: uuid.UUID) -> JobEnvelope:
        async with self._session_factory() as db:
            return to_envelope(await self._require(db, job_id))

    async def cancel_if_queued(self, job_id: uuid.UUID) -> bool:
        now = self._clock()

        async with self._session_factory() as db:
            async with db.begin():
                stmt = (
                    update(Job)
                    .where(Job.id == job_id, Job.state == JobState.QUEUED.value)
                    .values(
                        state=JobState.FAILED.value,
                        error_info=CANCELLED_ERROR,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if (await db.execute(stmt)).rowcount == 0:
                    await self._require(db, job_id)
                    return False

                await log_event(db, "job_cancelled", "info", source="api", job_id=job_id)

        logger.info("Job %s cancelled", job_id)
        return True
