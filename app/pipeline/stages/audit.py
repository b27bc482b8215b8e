"""
Audit stage: run the three-way comparison and decide whether to notify.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.config import AuditSettings
from app.domain.pipeline import AuditJobPayload, NotifyJobPayload, QueueName
from app.feature_flags import DISCREPANCY_NOTIFICATIONS, FeatureFlags
from app.logging_utils import log_event
from app.pipeline.queue import QueuedJob
from app.pipeline.results import CallResult
from app.pipeline.stages.base import FollowUp, StageHandler, StageOutput
from db.repositories.poi_repository import POIRepository
from llm_audit.auditor import AIAuditor, AuditOutcome

logger = logging.getLogger(__name__)


class AuditStage(StageHandler):
    queue = QueueName.AUDIT

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        auditor: AIAuditor,
        settings: AuditSettings,
        feature_flags: FeatureFlags | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._auditor = auditor
        self._settings = settings
        self._feature_flags = feature_flags

    def run(self, job: QueuedJob, payload: AuditJobPayload) -> CallResult[StageOutput]:
        result = self._auditor.audit(
            payload.poi_id,
            website_data=payload.website_data,
            maps_data=payload.maps_data,
            job_id=job.id,
        )
        if not result.ok:
            return CallResult(failure=result.failure, error=result.error, detail=result.detail)

        outcome = result.unwrap()
        follow_ups = []
        if self._should_notify(outcome):
            follow_ups.append(
                FollowUp(
                    QueueName.NOTIFY,
                    NotifyJobPayload(poi_id=outcome.poi_id, audit_record_id=outcome.audit_record_id),
                )
            )
        return CallResult.success(
            StageOutput(
                follow_ups=follow_ups,
                summary={
                    "score": outcome.overall_score,
                    "status": outcome.poi_status,
                    "discrepancies": len(outcome.discrepancies),
                    "notify": bool(follow_ups),
                },
            )
        )

    def on_terminal_failure(self, job: QueuedJob, payload: AuditJobPayload, error: str) -> None:
        self._auditor.record_failure(payload.poi_id, error, job_id=job.id)

    def _should_notify(self, outcome: AuditOutcome) -> bool:
        if outcome.overall_score >= self._settings.notification_threshold or not outcome.discrepancies:
            return False
        if self._feature_flags is not None and not self._feature_flags.is_enabled(DISCREPANCY_NOTIFICATIONS):
            log_event(logger, logging.INFO, "notification_flag_disabled", poi_id=outcome.poi_id)
            return False
        if self._recipient(outcome.poi_id) is None:
            log_event(logger, logging.INFO, "notification_no_recipient", poi_id=outcome.poi_id)
            return False
        return True

    def _recipient(self, poi_id: uuid.UUID) -> str | None:
        with self._session_factory() as db:
            return POIRepository(db).high_trust_email(poi_id)
