# jobs/service.py
"""
Producer and reader contract: enqueue, poll status, cancel while queued.

Usage:
    job_id = await service.enqueue("trade_summary", {...}, owner_id)
    view = await service.get_status(job_id, owner_id)
    cancelled = await service.cancel_if_queued(job_id, owner_id)
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from jobs.envelope import (
    DEFAULT_MAX_ATTEMPTS,
    JobEnvelope,
    JobKind,
    JobState,
    derive_job_id,
    new_job,
    utcnow,
)
from jobs.errors import Forbidden
from jobs.store import QueueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobView:
    id: uuid.UUID
    kind: JobKind
    state: JobState
    attempt: int
    max_attempts: int
    result: dict | None
    error_info: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: JobEnvelope) -> "JobView":
        return cls(
            id=job.id,
            kind=job.kind,
            state=job.state,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            result=job.result if job.state is JobState.SUCCEEDED else None,
            error_info=job.error_info if job.is_terminal and job.state is not JobState.SUCCEEDED else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobService:
    def __init__(
        self,
        store: QueueStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self._clock = clock

    async def enqueue(
        self,
        kind: JobKind | str,
        payload: dict,
        owner_id: str,
        *,
        idempotency_key: str | None = None,
        run_at: datetime | None = None,
    ) -> uuid.UUID:
        """Validate and queue a job. Raises ValidationError or DuplicateJob."""
        job_id = derive_job_id(owner_id, idempotency_key) if idempotency_key else None
        job = new_job(
            kind,
            payload,
            owner_id,
            job_id=job_id,
            max_attempts=self.max_attempts,
            visible_at=run_at,
            now=self._clock(),
        )
        return await self.store.enqueue(job)

    async def _owned(self, job_id: uuid.UUID, owner_id: str) -> JobEnvelope:
        job = await self.store.get(job_id)
        if job.owner_id != owner_id:
            logger.warning("Owner %s denied access to job %s", owner_id, job_id)
            raise Forbidden(job_id)
        return job

    async def get_status(self, job_id: uuid.UUID, owner_id: str) -> JobView:
        return JobView.from_job(await self._owned(job_id, owner_id))

    async def cancel_if_queued(self, job_id: uuid.UUID, owner_id: str) -> bool:
        await self._owned(job_id, owner_id)
        return await self.store.cancel_if_queued(job_id)
