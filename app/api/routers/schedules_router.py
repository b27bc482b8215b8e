"""
app/api/routers/schedules_router.py

Manual schedule trigger.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import CallerIdentity, get_runtime, require_roles
from app.runtime import PipelineRuntime
from app.scheduler.jobs import UnknownScheduleError
from app.schemas.pipeline import ScheduleTriggerResponse

router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.post("/{name}/trigger", response_model=ScheduleTriggerResponse)
def trigger_schedule(
    name: str,
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(require_roles("ADMIN")),
) -> ScheduleTriggerResponse:
    """
    Run a schedule now, even when it is deactivated.
    """

    try:
        result = runtime.audit_scheduler.run_schedule(name, force=True, triggered_by=caller.label)
    except UnknownScheduleError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Schedule '{name}' not found.",
        ) from exc
    return ScheduleTriggerResponse(**vars(result))
