"""
app/api/routers/costs_router.py

Cost summary and budget projection.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import CallerIdentity, get_caller, get_runtime
from app.config import get_budget_settings
from app.runtime import PipelineRuntime
from app.schemas.costs import BudgetStatusResponse, CostSummaryResponse
from costs.ledger import month_bounds

router = APIRouter(prefix="/costs", tags=["costs"])


@router.get("/summary", response_model=CostSummaryResponse)
def get_cost_summary(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    top_n: int = Query(default=10, ge=1, le=100),
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(get_caller),
) -> CostSummaryResponse:
    """
    Spend between ``start`` and ``end``; defaults to the current calendar month.
    """

    month_start, month_end = month_bounds(datetime.now(timezone.utc))
    start = start or month_start
    end = end or month_end
    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="'end' must be after 'start'.",
        )

    summary = runtime.cost_ledger.summary(start, end, top_n=top_n)
    return CostSummaryResponse(
        start=summary.start,
        end=summary.end,
        total=summary.total,
        entry_count=summary.entry_count,
        by_service=summary.by_service,
        by_day={day.isoformat(): amount for day, amount in summary.by_day.items()},
        top_pois=[{"poi_id": str(poi_id), "total": amount} for poi_id, amount in summary.top_pois],
    )


@router.get("/budget", response_model=BudgetStatusResponse)
def get_budget_status(
    runtime: PipelineRuntime = Depends(get_runtime),
    caller: CallerIdentity = Depends(get_caller),
) -> BudgetStatusResponse:
    budget = runtime.cost_ledger.budget_status(get_budget_settings().monthly_budget)
    return BudgetStatusResponse(**vars(budget))
