# jobs/store.py
"""
Queue store contract consumed by the worker pool and the job service,
plus an in-memory implementation used by tests and local runs.

Every operation is atomic with respect to concurrent callers. The SQL
implementation lives in jobs/queue.py.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Protocol

from jobs.envelope import JobEnvelope, JobState, utcnow
from jobs.errors import DuplicateJob, FailureKind, JobNotFound

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "cancelled"
LEASE_EXHAUSTED_ERROR = "lease expired after final attempt"


class QueueStore(Protocol):
    async def enqueue(self, job: JobEnvelope) -> uuid.UUID: ...

    async def claim_next(self, worker_id: str, lease_duration: timedelta) -> JobEnvelope | None: ...

    async def complete(self, job_id: uuid.UUID, result: dict) -> bool: ...

    async def fail(
        self,
        job_id: uuid.UUID,
        error_info: str,
        next_visible_at: datetime | None,
        *,
        failure_kind: FailureKind | None = None,
        worker_id: str | None = None,
    ) -> bool: ...

    async def get(self, job_id: uuid.UUID) -> JobEnvelope: ...

    async def cancel_if_queued(self, job_id: uuid.UUID) -> bool: ...


class InMemoryQueueStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._jobs: dict[uuid.UUID, JobEnvelope] = {}
        self._lock = asyncio.Lock()

    def _claimable(self, job: JobEnvelope, now: datetime) -> bool:
        if job.state is JobState.QUEUED:
            return job.visible_at <= now and job.attempt < job.max_attempts
        if job.state is JobState.LEASED:
            return job.lease_expires_at is not None and job.lease_expires_at <= now
        return False

    async def enqueue(self, job: JobEnvelope) -> uuid.UUID:
        async with self._lock:
            if job.id in self._jobs:
                raise DuplicateJob(job.id)
            self._jobs[job.id] = replace(job)
        logger.info("Enqueued job %s [%s] owner=%s", job.id, job.kind.value, job.owner_id)
        return job.id

    async def claim_next(self, worker_id: str, lease_duration: timedelta) -> JobEnvelope | None:
        async with self._lock:
            now = self._clock()
            ready = sorted(
                (j for j in self._jobs.values() if self._claimable(j, now)),
                key=lambda j: (j.visible_at, j.created_at),
            )
            for job in ready:
                if job.attempt >= job.max_attempts:
                    # expired lease on the final attempt
                    job.state = JobState.DEAD_LETTERED
                    job.error_info = job.error_info or LEASE_EXHAUSTED_ERROR
                    job.lease_owner = None
                    job.lease_expires_at = None
                    job.updated_at = now
                    logger.error("Job %s dead-lettered: %s", job.id, LEASE_EXHAUSTED_ERROR)
                    continue

                job.state = JobState.LEASED
                job.lease_owner = worker_id
                job.lease_expires_at = now + lease_duration
                job.attempt += 1
                job.updated_at = now
                logger.info(
                    "Worker %s claimed job %s [%s] attempt %d/%d",
                    worker_id, job.id, job.kind.value, job.attempt, job.max_attempts,
                )
                return replace(job)
        return None

    async def complete(self, job_id: uuid.UUID, result: dict) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.is_terminal:
                logger.info("Job %s already %s, complete ignored", job_id, job.state.value)
                return False
            job.state = JobState.SUCCEEDED
            job.result = result
            job.lease_owner = None
            job.lease_expires_at = None
            job.updated_at = self._clock()
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
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.is_terminal:
                logger.info("Job %s already %s, fail ignored", job_id, job.state.value)
                return False
            if worker_id is not None and job.lease_owner != worker_id:
                logger.warning("Job %s no longer leased by %s, fail ignored", job_id, worker_id)
                return False

            job.error_info = error_info
            job.last_failure_kind = failure_kind
            job.lease_owner = None
            job.lease_expires_at = None
            job.updated_at = self._clock()
            if next_visible_at is not None:
                job.state = JobState.QUEUED
                job.visible_at = next_visible_at
            else:
                job.state = JobState.DEAD_LETTERED
                logger.error("Job %s dead-lettered after %d attempts", job_id, job.attempt)
        return True

    async def get(self, job_id: uuid.UUID) -> JobEnvelope:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            return replace(job)

    async def cancel_if_queued(self, job_id: uuid.UUID) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.state is not JobState.QUEUED:
                return False
            job.state = JobState.FAILED
            job.error_info = CANCELLED_ERROR
            job.updated_at = self._clock()
        logger.info("Job %s cancelled", job_id)
        return True
