"""
Notify stage: send the discrepancy alert for one audit record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from app.config import MailSettings
from app.domain.pipeline import NotifyJobPayload, QueueName
from app.logging_utils import log_event
from app.notifications.dispatcher import NotificationDispatcher
from app.pipeline.queue import QueuedJob
from app.pipeline.results import CallResult
from app.pipeline.stages.base import StageHandler, StageOutput
from db.models.mail_outbox import MailStatus
from db.repositories.audit_repository import AuditRepository
from db.repositories.poi_repository import POIRepository

logger = logging.getLogger(__name__)

_DISCREPANCY_KEYS = ("field_name", "master_value", "website_value", "maps_value", "severity")


class NotifyStage(StageHandler):
    """
    Mail delivery failures are final in the outbox: the stage still
    completes, since a job retry would only be skipped as a duplicate.
    """

    queue = QueueName.NOTIFY

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
        settings: MailSettings,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._settings = settings

    def run(self, job: QueuedJob, payload: NotifyJobPayload) -> CallResult[StageOutput]:
        with self._session_factory() as db:
            poi = POIRepository(db).get(payload.poi_id)
            record = AuditRepository(db).get_record(payload.audit_record_id)
            if poi is None or record is None:
                log_event(
                    logger,
                    logging.WARNING,
                    "notify_target_missing",
                    poi_id=payload.poi_id,
                    audit_record_id=payload.audit_record_id,
                )
                return CallResult.success(StageOutput(summary={"status": "target_missing"}))
            recipient = POIRepository(db).high_trust_email(poi.id)
            mail_payload = self._mail_payload(poi.id, poi.name, record.overall_score, record.discrepancies)

        outcome = self._dispatcher.dispatch(
            recipient=recipient,
            template=payload.template,
            payload=mail_payload,
            locale=payload.locale,
            poi_id=payload.poi_id,
        )
        if outcome is None:
            return CallResult.success(StageOutput(summary={"status": "no_recipient"}))
        if outcome.status == MailStatus.FAILED:
            log_event(
                logger,
                logging.WARNING,
                "notify_delivery_failed",
                poi_id=payload.poi_id,
                entry_id=outcome.entry_id,
                error=outcome.error,
            )
        return CallResult.success(
            StageOutput(summary={"status": outcome.status, "entry_id": str(outcome.entry_id)})
        )

    def _mail_payload(
        self,
        poi_id: Any,
        poi_name: str,
        score: int,
        discrepancies: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        # Only stable values go in: the payload feeds the duplicate-content hash.
        return {
            "poi": {"id": str(poi_id), "name": poi_name},
            "score": score,
            "discrepancies": [
                {key: item.get(key) for key in _DISCREPANCY_KEYS} for item in (discrepancies or [])
            ],
            "audit_url": f"{self._settings.app_url.rstrip('/')}/pois/{poi_id}",
        }
