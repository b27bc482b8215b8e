"""
Schemas for the pipeline, failed-job and schedule endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.domain.pipeline import QueueName


class StartAuditsRequest(BaseModel):
    """
    Either explicit ``poi_ids`` or a filter; an empty request is rejected.
    """

    model_config = ConfigDict(extra="forbid")

    poi_ids: list[UUID] = Field(default_factory=list, max_length=5000)
    region: str | None = None
    category: str | None = None
    max_score: int | None = Field(default=None, ge=0, le=100)
    limit: int = Field(default=1000, ge=1, le=5000)
    priority: int | None = Field(default=None, ge=1, le=10)
    max_depth: int | None = Field(default=None, ge=0, le=10)

    @model_validator(mode="after")
    def _require_target(self) -> "StartAuditsRequest":
        if not self.poi_ids and not (self.region or self.category or self.max_score is not None):
            raise ValueError("Provide poi_ids or at least one filter (region, category, max_score).")
        return self


class StartAuditsResponse(BaseModel):
    requested: int
    enqueued: int
    deduplicated: int
    missing: list[UUID] = Field(default_factory=list)
    job_ids: list[str] = Field(default_factory=list)


class QueueDepth(BaseModel):
    waiting: int
    delayed: int
    active: int
    completed: int
    failed: int


class QueuesResponse(BaseModel):
    queues: dict[str, QueueDepth]


class ScalingResponse(BaseModel):
    recommended_workers: int
    waiting: int | None = None
    active: int | None = None
    min_workers: int
    max_workers: int
    scale_up_threshold: int
    scale_down_threshold: int


class FailedJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    queue: str
    job_id: str
    job_key: str
    payload: dict[str, Any]
    error: str
    stack_trace: str | None = None
    attempts_made: int
    max_attempts: int
    created_at: datetime


class FailedJobListResponse(BaseModel):
    items: list[FailedJobResponse] = Field(default_factory=list)


class RetryResponse(BaseModel):
    failed_job_id: UUID
    job_id: str | None = None
    created: bool
    error: str | None = None


class BulkRetryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    queue: QueueName | None = None
    limit: int = Field(default=100, ge=1, le=1000)


class BulkRetryResponse(BaseModel):
    retried: list[RetryResponse] = Field(default_factory=list)
    errors: list[RetryResponse] = Field(default_factory=list)


class ScheduleTriggerResponse(BaseModel):
    name: str
    status: str
    matched: int
    enqueued: int
    deduplicated: int
    reason: str | None = None
