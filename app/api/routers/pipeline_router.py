"""
app/api/routers/pipeline_router.py

Audit start and queue/scaling status endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import CallerIdentity, get_caller, get_runtime, require_roles
from app.config import get_autoscaler_settings
from app.domain.pipeline import PayloadValidationError
from app.logging_utils import log_event
from app.pipeline.autoscaler import queue_depths
from app.runtime import PipelineRuntime
from app.schemas.pipeline import (
    QueueDepth,
    QueuesResponse,
    ScalingResponse,
    StartAuditsRequest,
    StartAuditsResponse,
)
from app.services.audit_trigger_service import POIFilter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.post(
    "/audits",
    response_model=StartAuditsResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_audits(
    body: StartAuditsRequest,
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(require_roles("ADMIN", "EDITOR")),
) -> StartAuditsResponse:
    """
    Enqueue crawl jobs for the given POIs, or for every POI matching the filter.

    POIs whose crawl job is still pending are reported as ``deduplicated``.
    """

    service = runtime.trigger_service
    try:
        if body.poi_ids:
            result = service.start_for_ids(
                body.poi_ids,
                triggered_by=caller.label,
                priority=body.priority,
                max_depth=body.max_depth,
            )
        else:
            result = service.start_for_filter(
                POIFilter(region=body.region, category=body.category, max_score=body.max_score),
                limit=body.limit,
                triggered_by=caller.label,
                priority=body.priority,
            )
    except PayloadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_event(
        logger,
        logging.INFO,
        "audit_start_requested",
        caller_id=caller.caller_id,
        role=caller.role,
        enqueued=result.enqueued,
        deduplicated=result.deduplicated,
    )
    return StartAuditsResponse(
        requested=result.requested,
        enqueued=result.enqueued,
        deduplicated=result.deduplicated,
        missing=result.missing,
        job_ids=result.job_ids,
    )


@router.get("/queues", response_model=QueuesResponse)
def get_queues(
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(get_caller),
) -> QueuesResponse:
    depths = queue_depths(runtime.job_queue)
    return QueuesResponse(queues={name: QueueDepth(**counts) for name, counts in depths.items()})


@router.get("/scaling", response_model=ScalingResponse)
def get_scaling(
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(get_caller),
) -> ScalingResponse:
    settings = get_autoscaler_settings()
    decision = runtime.autoscaler.last_decision
    return ScalingResponse(
        recommended_workers=runtime.autoscaler.recommended_workers,
        waiting=decision.waiting if decision else None,
        active=decision.active if decision else None,
        min_workers=settings.min_workers,
        max_workers=settings.max_workers,
        scale_up_threshold=settings.scale_up_threshold,
        scale_down_threshold=settings.scale_down_threshold,
    )
