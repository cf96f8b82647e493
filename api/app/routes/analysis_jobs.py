# api/app/routes/analysis_jobs.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from api.app.dependencies import get_current_owner, get_job_service
from api.app.schemas.jobs import (
    CancelJobResponse,
    EnqueueJobRequest,
    EnqueueJobResponse,
    JobStatusResponse,
)
from jobs.errors import DuplicateJob, Forbidden, JobNotFound, ValidationError
from jobs.service import JobService

router = APIRouter(tags=["analysis-jobs"])


@router.post(
    "/analysis-jobs",
    response_model=EnqueueJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_analysis_job(
    body: EnqueueJobRequest,
    owner_id: str = Depends(get_current_owner),
    service: JobService = Depends(get_job_service),
):
    """Queue an analysis job; poll GET /analysis-jobs/{id} for the result."""
    try:
        job_id = await service.enqueue(
            body.kind,
            body.payload,
            owner_id,
            idempotency_key=body.idempotency_key,
            run_at=body.run_at,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "errors": exc.errors},
        ) from exc
    except DuplicateJob as exc:
        raise HTTPException(
            status_code=409,
            detail={"message": "Job already queued", "id": str(exc.job_id)},
        ) from exc

    return EnqueueJobResponse(id=job_id)


@router.get("/analysis-jobs/{job_id}", response_model=JobStatusResponse)
async def get_analysis_job(
    job_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    service: JobService = Depends(get_job_service),
):
    try:
        view = await service.get_status(job_id, owner_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail="Not allowed to read this job") from exc

    return JobStatusResponse.model_validate(view)


@router.delete("/analysis-jobs/{job_id}", response_model=CancelJobResponse)
async def cancel_analysis_job(
    job_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    service: JobService = Depends(get_job_service),
):
    """Best-effort: only jobs still waiting in the queue can be cancelled."""
    try:
        cancelled = await service.cancel_if_queued(job_id, owner_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail="Not allowed to cancel this job") from exc

    return CancelJobResponse(id=job_id, cancelled=cancelled)
