"""
app/services package marker.
"""

from app.services.audit_trigger_service import AuditTriggerResult, AuditTriggerService, POIFilter
from app.services.failed_job_service import (
    FailedJobAlreadyRetriedError,
    FailedJobNotFoundError,
    FailedJobService,
)

__all__ = [
    "AuditTriggerResult",
    "AuditTriggerService",
    "FailedJobAlreadyRetriedError",
    "FailedJobNotFoundError",
    "FailedJobService",
    "POIFilter",
]
