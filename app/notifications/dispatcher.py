"""
Notification dispatch through the mail outbox.

Two gates protect recipients: an identical message (same recipient,
template and payload) inside the spam-protection window is recorded as
SKIPPED and never sent; everything else is persisted as PENDING and then
delivered with a bounded number of attempts. When the match is an entry
still PENDING or SENDING (the previous dispatch raised before finishing),
that entry is delivered instead of being counted as a duplicate.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from app import metrics
from app.config import MailSettings
from app.logging_utils import log_event
from app.notifications.mailer import BaseMailer
from app.notifications.templates import render
from app.pipeline.backoff import compute_backoff
from app.pipeline.results import FailureKind
from costs.ledger import CostLedger
from db.models.cost_entry import CostService
from db.models.mail_outbox import MailStatus
from db.repositories.mail_outbox_repository import MailOutboxRepository

logger = logging.getLogger(__name__)

_UNFINISHED = (MailStatus.PENDING, MailStatus.SENDING)


def content_hash(recipient: str, template: str, payload: dict[str, Any]) -> str:
    """
    SHA-256 over the canonical JSON of (recipient, template, payload).
    """

    canonical = json.dumps(
        {"to": recipient.strip().lower(), "template": template, "data": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class DispatchOutcome:
    entry_id: uuid.UUID
    status: str
    attempts: int
    error: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        mailer: BaseMailer,
        settings: MailSettings,
        cost_ledger: CostLedger | None = None,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
        backoff_base_seconds: float = 1.0,
    ) -> None:
        self._session_factory = session_factory
        self._mailer = mailer
        self._settings = settings
        self._cost_ledger = cost_ledger
        self._clock = clock
        self._sleep = sleep
        self._backoff_base_seconds = backoff_base_seconds

    def dispatch(
        self,
        *,
        recipient: str | None,
        template: str,
        payload: dict[str, Any],
        locale: str | None = None,
        poi_id: uuid.UUID | None = None,
    ) -> DispatchOutcome | None:
        """
        Queue and deliver one notification.

        Returns None when there is no recipient; that is not an error.
        """

        if not recipient:
            log_event(logger, logging.INFO, "notification_no_recipient", template=template, poi_id=poi_id)
            return None

        locale = locale or self._settings.default_locale
        rendered = render(template, payload, locale)
        digest = content_hash(recipient, template, payload)
        window_start = self._clock() - timedelta(days=self._settings.spam_protection_days)

        with self._session_factory() as db, db.begin():
            outbox = MailOutboxRepository(db)
            duplicate = outbox.find_recent_duplicate(
                recipient=recipient,
                content_hash=digest,
                since=window_start,
            )
            if duplicate is not None and duplicate.status in _UNFINISHED:
                # An earlier attempt stopped before delivery finished.
                entry_id = duplicate.id
                duplicate_id = None
                resumed = True
            else:
                entry = outbox.create(
                    status=MailStatus.SKIPPED if duplicate is not None else MailStatus.PENDING,
                    recipient=recipient,
                    subject=rendered.subject,
                    template=template,
                    locale=locale,
                    payload=payload,
                    content_hash=digest,
                    poi_id=poi_id,
                )
                entry_id = entry.id
                duplicate_id = duplicate.id if duplicate is not None else None
                resumed = False

        if resumed:
            log_event(logger, logging.INFO, "notification_resumed", recipient=recipient, entry_id=entry_id)

        if duplicate_id is not None:
            metrics.EMAILS_TOTAL.labels(status=MailStatus.SKIPPED).inc()
            log_event(
                logger,
                logging.INFO,
                "notification_skipped_duplicate",
                recipient=recipient,
                template=template,
                duplicate_of=duplicate_id,
                entry_id=entry_id,
            )
            return DispatchOutcome(entry_id=entry_id, status=MailStatus.SKIPPED, attempts=0)

        return self._deliver(
            entry_id,
            recipient=recipient,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
        )

    def _deliver(
        self,
        entry_id: uuid.UUID,
        *,
        recipient: str,
        subject: str,
        html: str,
        text: str,
    ) -> DispatchOutcome:
        max_attempts = self._settings.max_attempts
        error: str | None = None

        for attempt in range(1, max_attempts + 1):
            with self._session_factory() as db, db.begin():
                outbox = MailOutboxRepository(db)
                entry = outbox.get(entry_id)
                outbox.mark_sending(entry)

            result = self._mailer.send(to=recipient, subject=subject, html=html, text=text)
            if self._cost_ledger is not None:
                self._cost_ledger.record(
                    service=CostService.MAIL,
                    operation="send",
                    details={"entry_id": str(entry_id), "attempt": attempt, "ok": result.ok},
                )

            if result.ok:
                with self._session_factory() as db, db.begin():
                    outbox = MailOutboxRepository(db)
                    outbox.mark_sent(outbox.get(entry_id))
                metrics.EMAILS_TOTAL.labels(status=MailStatus.SENT).inc()
                log_event(logger, logging.INFO, "notification_sent", entry_id=entry_id, attempts=attempt)
                return DispatchOutcome(entry_id=entry_id, status=MailStatus.SENT, attempts=attempt)

            error = f"{result.error}: {result.detail}" if result.detail else result.error
            log_event(
                logger,
                logging.WARNING,
                "notification_attempt_failed",
                entry_id=entry_id,
                attempt=attempt,
                max_attempts=max_attempts,
                error=error,
            )
            if result.failure != FailureKind.TRANSIENT or attempt >= max_attempts:
                break
            self._sleep(compute_backoff(attempt, base_seconds=self._backoff_base_seconds))

        with self._session_factory() as db, db.begin():
            outbox = MailOutboxRepository(db)
            entry = outbox.get(entry_id)
            outbox.mark_failed(entry, error or "unknown error")
            attempts = entry.attempts
        metrics.EMAILS_TOTAL.labels(status=MailStatus.FAILED).inc()
        return DispatchOutcome(entry_id=entry_id, status=MailStatus.FAILED, attempts=attempts, error=error)
