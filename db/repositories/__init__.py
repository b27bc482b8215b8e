"""
Repository layer exports.
"""

from db.repositories.audit_repository import AuditRepository
from db.repositories.cost_repository import CostRepository
from db.repositories.failed_job_repository import FailedJobRepository
from db.repositories.feature_flag_repository import FeatureFlagRepository
from db.repositories.mail_outbox_repository import MailOutboxRepository
from db.repositories.poi_repository import POIRepository
from db.repositories.schedule_repository import ScheduleRepository
from db.repositories.scraped_page_repository import ScrapedPageRepository

__all__ = [
    "AuditRepository",
    "CostRepository",
    "FailedJobRepository",
    "FeatureFlagRepository",
    "MailOutboxRepository",
    "POIRepository",
    "ScheduleRepository",
    "ScrapedPageRepository",
]
