"""
app/services/audit_trigger_service.py

Seeds the pipeline by enqueuing crawl jobs for POIs.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.domain.pipeline import CrawlJobPayload, QueueName
from app.logging_utils import log_event
from app.pipeline.queue import JobQueue
from db.repositories.poi_repository import POIRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class POIFilter:
    region: str | None = None
    category: str | None = None
    max_score: int | None = None

    @classmethod
    def from_mapping(cls, raw: dict | None) -> "POIFilter":
        raw = raw or {}
        max_score = raw.get("max_score")
        return cls(
            region=raw.get("region") or None,
            category=raw.get("category") or None,
            max_score=int(max_score) if max_score is not None else None,
        )


@dataclass
class AuditTriggerResult:
    requested: int = 0
    enqueued: int = 0
    deduplicated: int = 0
    missing: list[uuid.UUID] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)


class AuditTriggerService:
    """
    Enqueues one crawl job per POI. Re-triggering a POI whose crawl job is
    still pending is a no-op.
    """

    def __init__(self, *, session_factory: Callable[[], Session], job_queue: JobQueue) -> None:
        self._session_factory = session_factory
        self._job_queue = job_queue

    def start_for_ids(
        self,
        poi_ids: Sequence[uuid.UUID],
        *,
        triggered_by: str | None = None,
        priority: int | None = None,
        max_depth: int | None = None,
    ) -> AuditTriggerResult:
        unique_ids = list(dict.fromkeys(poi_ids))
        with self._session_factory() as db:
            found = {poi.id for poi in POIRepository(db).get_many(unique_ids)}

        result = AuditTriggerResult(requested=len(unique_ids))
        result.missing = [poi_id for poi_id in unique_ids if poi_id not in found]
        self._enqueue(
            [poi_id for poi_id in unique_ids if poi_id in found],
            result,
            triggered_by=triggered_by,
            priority=priority,
            max_depth=max_depth,
        )
        return result

    def start_for_filter(
        self,
        poi_filter: POIFilter,
        *,
        limit: int,
        triggered_by: str | None = None,
        priority: int | None = None,
        schedule_name: str | None = None,
    ) -> AuditTriggerResult:
        with self._session_factory() as db:
            poi_ids = [
                poi.id
                for poi in POIRepository(db).list_auditable(
                    region=poi_filter.region,
                    category=poi_filter.category,
                    max_score=poi_filter.max_score,
                    limit=limit,
                )
            ]

        result = AuditTriggerResult(requested=len(poi_ids))
        self._enqueue(
            poi_ids,
            result,
            triggered_by=triggered_by,
            priority=priority,
            schedule_name=schedule_name,
        )
        return result

    def _enqueue(
        self,
        poi_ids: Sequence[uuid.UUID],
        result: AuditTriggerResult,
        *,
        triggered_by: str | None,
        priority: int | None,
        max_depth: int | None = None,
        schedule_name: str | None = None,
    ) -> None:
        for poi_id in poi_ids:
            enqueued = self._job_queue.enqueue(
                QueueName.CRAWL,
                CrawlJobPayload(poi_id=poi_id, max_depth=max_depth, schedule_name=schedule_name),
                priority=priority,
                triggered_by=triggered_by,
            )
            result.job_ids.append(enqueued.job_id)
            if enqueued.created:
                result.enqueued += 1
            else:
                result.deduplicated += 1

        log_event(
            logger,
            logging.INFO,
            "audits_triggered",
            requested=result.requested,
            enqueued=result.enqueued,
            deduplicated=result.deduplicated,
            missing=len(result.missing),
            triggered_by=triggered_by,
            schedule_name=schedule_name,
        )
