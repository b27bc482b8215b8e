"""
Schemas for cost reporting endpoints.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CostSummaryResponse(BaseModel):
    start: datetime
    end: datetime
    total: Decimal
    entry_count: int
    by_service: dict[str, Decimal] = Field(default_factory=dict)
    by_day: dict[str, Decimal] = Field(default_factory=dict)
    top_pois: list[dict] = Field(default_factory=list)


class BudgetStatusResponse(BaseModel):
    monthly_budget: Decimal
    current_spend: Decimal
    projected_spend: Decimal
    percent_used: Decimal
    is_exceeded: bool
