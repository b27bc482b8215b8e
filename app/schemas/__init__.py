"""
app/schemas package marker.
"""

from app.schemas.costs import BudgetStatusResponse, CostSummaryResponse
from app.schemas.pipeline import (
    BulkRetryRequest,
    BulkRetryResponse,
    FailedJobListResponse,
    FailedJobResponse,
    QueuesResponse,
    RetryResponse,
    ScalingResponse,
    ScheduleTriggerResponse,
    StartAuditsRequest,
    StartAuditsResponse,
)

__all__ = [
    "BudgetStatusResponse",
    "BulkRetryRequest",
    "BulkRetryResponse",
    "CostSummaryResponse",
    "FailedJobListResponse",
    "FailedJobResponse",
    "QueuesResponse",
    "RetryResponse",
    "ScalingResponse",
    "ScheduleTriggerResponse",
    "StartAuditsRequest",
    "StartAuditsResponse",
]
