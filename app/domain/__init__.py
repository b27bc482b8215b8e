"""
app/domain package marker.
"""

from app.domain.pipeline import (
    AuditJobPayload,
    CrawlJobPayload,
    EnrichJobPayload,
    JobPayload,
    NotifyJobPayload,
    PayloadValidationError,
    QueueName,
    job_key_for,
    validate_payload,
)

__all__ = [
    "AuditJobPayload",
    "CrawlJobPayload",
    "EnrichJobPayload",
    "JobPayload",
    "NotifyJobPayload",
    "PayloadValidationError",
    "QueueName",
    "job_key_for",
    "validate_payload",
]
