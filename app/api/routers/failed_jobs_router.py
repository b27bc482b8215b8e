"""
app/api/routers/failed_jobs_router.py

List and re-enqueue dead-lettered jobs.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import CallerIdentity, get_caller, get_runtime, require_roles
from app.domain.pipeline import PayloadValidationError, QueueName
from app.runtime import PipelineRuntime
from app.schemas.pipeline import (
    BulkRetryRequest,
    BulkRetryResponse,
    FailedJobListResponse,
    FailedJobResponse,
    RetryResponse,
)
from app.services.failed_job_service import FailedJobAlreadyRetriedError, FailedJobNotFoundError

router = APIRouter(prefix="/failed-jobs", tags=["failed-jobs"])


@router.get("", response_model=FailedJobListResponse)
def list_failed_jobs(
    queue: QueueName | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(get_caller),
) -> FailedJobListResponse:
    records = runtime.failed_jobs.list_open(queue=queue, limit=limit)
    return FailedJobListResponse(items=[FailedJobResponse.model_validate(record) for record in records])


@router.post("/retry", response_model=BulkRetryResponse)
def retry_failed_jobs(
    body: BulkRetryRequest,
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(require_roles("ADMIN", "EDITOR")),
) -> BulkRetryResponse:
    result = runtime.failed_jobs.retry_all(queue=body.queue, limit=body.limit, triggered_by=caller.label)
    return BulkRetryResponse(
        retried=[RetryResponse(**vars(item)) for item in result.retried],
        errors=[RetryResponse(**vars(item)) for item in result.errors],
    )


@router.post("/{failed_job_id}/retry", response_model=RetryResponse)
def retry_failed_job(
    failed_job_id: uuid.UUID,
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(require_roles("ADMIN", "EDITOR")),
) -> RetryResponse:
    try:
        outcome = runtime.failed_jobs.retry(failed_job_id, triggered_by=caller.label)
    except FailedJobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Failed job {failed_job_id} not found.",
        ) from exc
    except FailedJobAlreadyRetriedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Failed job {failed_job_id} was already retried.",
        ) from exc
    except PayloadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RetryResponse(**vars(outcome))
