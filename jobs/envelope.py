# jobs/envelope.py
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from jobs.errors import FailureKind, ValidationError

DEFAULT_MAX_ATTEMPTS = 3

# Namespace for ids derived from producer idempotency keys
IDEMPOTENCY_NAMESPACE = uuid.UUID("5f0c7a2e-8d1b-4c61-9a57-3e2b9d04c1a8")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes (SQLite rows, caller input) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobKind(str, enum.Enum):
    TRADE_SUMMARY = "trade_summary"
    DAILY_SUMMARY = "daily_summary"
    WEEKLY_SUMMARY = "weekly_summary"
    MONTHLY_SUMMARY = "monthly_summary"


class JobState(str, enum.Enum):
    QUEUED = "queued"
    LEASED = "leased"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.DEAD_LETTERED})


# ─────────────────────────────────────────────
# Payload shapes
# ─────────────────────────────────────────────

class TradeSummaryPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    trade_id: str = Field(min_length=1)
    trade: dict = Field(min_length=1)
    model: str | None = None


class PeriodSummaryPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    period_start: datetime
    period_end: datetime
    stats: dict
    model: str | None = None

    @field_validator("period_start", "period_end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "PeriodSummaryPayload":
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self


PAYLOAD_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.TRADE_SUMMARY: TradeSummaryPayload,
    JobKind.DAILY_SUMMARY: PeriodSummaryPayload,
    JobKind.WEEKLY_SUMMARY: PeriodSummaryPayload,
    JobKind.MONTHLY_SUMMARY: PeriodSummaryPayload,
}


def parse_kind(kind: JobKind | str) -> JobKind:
    try:
        return JobKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown job kind: {kind}") from None


def validate_payload(kind: JobKind | str, payload: dict) -> dict:
    """
    Checks payload against the model for its kind and returns the
    JSON-safe normalized dict that gets stored on the job.
    """
    job_kind = parse_kind(kind)
    if not isinstance(payload, dict):
        raise ValidationError(f"Payload for {job_kind.value} must be an object")

    model = PAYLOAD_MODELS[job_kind]
    try:
        parsed = model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        raise ValidationError(f"Invalid payload for {job_kind.value}", errors=errors) from exc
    return parsed.model_dump(mode="json")


def derive_job_id(owner_id: str, idempotency_key: str) -> uuid.UUID:
    return uuid.uuid5(IDEMPOTENCY_NAMESPACE, f"{owner_id}:{idempotency_key}")


# ─────────────────────────────────────────────
# Envelope
# ─────────────────────────────────────────────

@dataclass
class JobEnvelope:
    """Store-agnostic view of one job."""

    kind: JobKind
    payload: dict
    owner_id: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    state: JobState = JobState.QUEUED
    attempt: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    visible_at: datetime = field(default_factory=utcnow)
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    result: dict | None = None
    error_info: str | None = None
    last_failure_kind: FailureKind | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


def new_job(
    kind: JobKind | str,
    payload: dict,
    owner_id: str,
    *,
    job_id: uuid.UUID | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    visible_at: datetime | None = None,
    now: datetime | None = None,
) -> JobEnvelope:
    """Validates the payload and builds a fresh queued envelope."""
    if not owner_id:
        raise ValidationError("owner_id is required")
    if max_attempts < 1:
        raise ValidationError("max_attempts must be at least 1")

    job_kind = parse_kind(kind)
    normalized = validate_payload(job_kind, payload)
    now = as_utc(now) or utcnow()

    return JobEnvelope(
        id=job_id or uuid.uuid4(),
        kind=job_kind,
        payload=normalized,
        owner_id=owner_id,
        max_attempts=max_attempts,
        visible_at=as_utc(visible_at) or now,
        created_at=now,
        updated_at=now,
    )
