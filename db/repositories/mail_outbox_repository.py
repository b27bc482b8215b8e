"""
Repository for the notification outbox.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.mail_outbox import MailOutboxEntry, MailStatus


class MailOutboxRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, entry_id: uuid.UUID) -> MailOutboxEntry | None:
        return self._session.get(MailOutboxEntry, entry_id)

    def find_recent_duplicate(
        self,
        *,
        recipient: str,
        content_hash: str,
        since: datetime,
    ) -> MailOutboxEntry | None:
        """
        Return the newest non-skipped entry with the same recipient and hash since ``since``.
        """

        stmt = (
            select(MailOutboxEntry)
            .where(
                MailOutboxEntry.recipient == recipient,
                MailOutboxEntry.content_hash == content_hash,
                MailOutboxEntry.status != MailStatus.SKIPPED,
                MailOutboxEntry.created_at >= since,
            )
            .order_by(MailOutboxEntry.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def create(self, *, status: str = MailStatus.PENDING, **fields: Any) -> MailOutboxEntry:
        entry = MailOutboxEntry(status=status, attempts=0, **fields)
        self._session.add(entry)
        self._session.flush()
        return entry

    def mark_sending(self, entry: MailOutboxEntry) -> MailOutboxEntry:
        entry.status = MailStatus.SENDING
        entry.attempts += 1
        return entry

    def mark_sent(self, entry: MailOutboxEntry) -> MailOutboxEntry:
        entry.status = MailStatus.SENT
        entry.sent_at = datetime.now(timezone.utc)
        entry.last_error = None
        return entry

    def mark_failed(self, entry: MailOutboxEntry, error: str) -> MailOutboxEntry:
        entry.status = MailStatus.FAILED
        entry.last_error = error
        return entry

    def list_for_recipient(self, recipient: str) -> list[MailOutboxEntry]:
        stmt = (
            select(MailOutboxEntry)
            .where(MailOutboxEntry.recipient == recipient)
            .order_by(MailOutboxEntry.created_at)
        )
        return list(self._session.scalars(stmt).all())
