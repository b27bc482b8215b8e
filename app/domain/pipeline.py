"""
app/domain/pipeline.py

Queue identifiers and the validated per-stage job payloads.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class QueueName(str, Enum):
    CRAWL = "crawl"
    ENRICH = "enrich"
    AUDIT = "audit"
    NOTIFY = "notify"


class _JobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    poi_id: uuid.UUID


class CrawlJobPayload(_JobPayload):
    """
    Crawl the POI website. ``url`` overrides the website stored on the POI.
    """

    url: str | None = None
    max_depth: int | None = Field(default=None, ge=0, le=10)
    schedule_name: str | None = None


class EnrichJobPayload(_JobPayload):
    """
    Look the POI up in the places API. Name/address default to the POI record.
    """

    name: str | None = None
    address: str | None = None


class AuditJobPayload(_JobPayload):
    """
    Compare the three snapshots. Missing snapshots are read from the POI row.
    """

    website_data: dict[str, Any] | None = None
    maps_data: dict[str, Any] | None = None


class NotifyJobPayload(_JobPayload):
    audit_record_id: uuid.UUID
    template: str = "discrepancy-alert"
    locale: str | None = None


JobPayload = Union[CrawlJobPayload, EnrichJobPayload, AuditJobPayload, NotifyJobPayload]

PAYLOAD_MODELS: dict[QueueName, type[_JobPayload]] = {
    QueueName.CRAWL: CrawlJobPayload,
    QueueName.ENRICH: EnrichJobPayload,
    QueueName.AUDIT: AuditJobPayload,
    QueueName.NOTIFY: NotifyJobPayload,
}


def job_key_for(queue: QueueName, poi_id: uuid.UUID) -> str:
    """
    Deterministic key preventing duplicate in-flight work for one POI and stage.
    """

    return f"{queue.value}:{poi_id}"


class PayloadValidationError(ValueError):
    """
    Raised when a payload does not match the model of its queue.
    """


def validate_payload(queue: QueueName, payload: Any) -> JobPayload:
    """
    Coerce ``payload`` (model instance or dict) into the payload model for ``queue``.
    """

    model = PAYLOAD_MODELS[queue]
    if isinstance(payload, model):
        return payload  # type: ignore[return-value]
    if isinstance(payload, BaseModel):
        raise PayloadValidationError(
            f"Payload {type(payload).__name__} cannot be enqueued on queue '{queue.value}'."
        )
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValueError as exc:
        raise PayloadValidationError(
            f"Invalid payload for queue '{queue.value}': {exc}"
        ) from exc
