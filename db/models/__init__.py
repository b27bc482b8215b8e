"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and schema
creation work without extra imports.
"""

from db.models.audit import AuditRecord, DataField, ExtractedValue
from db.models.cost_entry import CostEntry
from db.models.failed_job import FailedJobRecord
from db.models.feature_flag import FeatureFlag
from db.models.mail_outbox import MailOutboxEntry
from db.models.pipeline_job import PipelineJob
from db.models.poi import POI, POIContact
from db.models.schedule_config import ScheduleConfig
from db.models.scraped_page import ScrapedPage

__all__ = [
    "AuditRecord",
    "CostEntry",
    "DataField",
    "ExtractedValue",
    "FailedJobRecord",
    "FeatureFlag",
    "MailOutboxEntry",
    "PipelineJob",
    "POI",
    "POIContact",
    "ScheduleConfig",
    "ScrapedPage",
]
