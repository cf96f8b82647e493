# api/app/schemas/jobs.py
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from jobs.envelope import JobKind, JobState


class EnqueueJobRequest(BaseModel):
    kind: JobKind
    payload: dict
    idempotency_key: str | None = Field(default=None, max_length=200)
    run_at: datetime | None = None


class EnqueueJobResponse(BaseModel):
    id: uuid.UUID


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: JobKind
    state: JobState
    attempt: int
    max_attempts: int
    result: dict | None = None
    error_info: str | None = None
    created_at: datetime
    updated_at: datetime


class CancelJobResponse(BaseModel):
    id: uuid.UUID
    cancelled: bool
