# jobs/errors.py
"""
Error taxonomy for the analysis job core.

Producer/reader-facing errors (ValidationError, DuplicateJob, JobNotFound,
Forbidden) are raised out of the service layer. Handler-side errors
(TransientError, PermanentError) are classified by the worker pool and
never reach producers; they only show up as a job's error_info.
"""
from __future__ import annotations

import enum


class FailureKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class JobError(Exception):
    """Base class for all job core errors."""


class ValidationError(JobError):
    """Payload does not match the shape required by its kind."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class DuplicateJob(JobError):
    def __init__(self, job_id) -> None:
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class JobNotFound(JobError):
    def __init__(self, job_id) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class Forbidden(JobError):
    def __init__(self, job_id) -> None:
        super().__init__(f"Not allowed to access job: {job_id}")
        self.job_id = job_id


class LeaseConflict(JobError):
    """Another worker won the race for the same job."""


class HandlerError(JobError):
    kind: FailureKind = FailureKind.UNKNOWN


class TransientError(HandlerError):
    """Timeout, connection reset, throttling or downstream 5xx."""

    kind = FailureKind.TRANSIENT


class PermanentError(HandlerError):
    """Downstream rejected the input; retrying will not help."""

    kind = FailureKind.PERMANENT
