"""
Repository for dead-lettered pipeline jobs.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from db.models.failed_job import FailedJobRecord


class FailedJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        *,
        queue: str,
        job_id: str,
        job_key: str,
        payload: dict[str, Any],
        error: str,
        stack_trace: str | None,
        attempts_made: int,
        max_attempts: int,
    ) -> FailedJobRecord:
        record = FailedJobRecord(
            queue=queue,
            job_id=job_id,
            job_key=job_key,
            payload=payload,
            error=error,
            stack_trace=stack_trace,
            attempts_made=attempts_made,
            max_attempts=max_attempts,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def get(self, record_id: uuid.UUID) -> FailedJobRecord | None:
        return self._session.get(FailedJobRecord, record_id)

    def list_open(
        self,
        *,
        queue: str | None = None,
        limit: int = 100,
    ) -> list[FailedJobRecord]:
        """Return failed jobs that have not been retried yet, newest first."""
        stmt: Select[tuple[FailedJobRecord]] = select(FailedJobRecord).where(
            FailedJobRecord.retried_at.is_(None)
        )
        if queue:
            stmt = stmt.where(FailedJobRecord.queue == queue)
        stmt = stmt.order_by(FailedJobRecord.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def claim_retry(self, record_id: uuid.UUID) -> bool:
        """Stamp ``retried_at`` unless already set. Returns False when another caller won."""
        stmt = (
            update(FailedJobRecord)
            .where(FailedJobRecord.id == record_id, FailedJobRecord.retried_at.is_(None))
            .values(retried_at=datetime.now(timezone.utc))
        )
        return self._session.execute(stmt).rowcount == 1

    def release_retry(self, record_id: uuid.UUID) -> None:
        stmt = update(FailedJobRecord).where(FailedJobRecord.id == record_id).values(retried_at=None)
        self._session.execute(stmt)
