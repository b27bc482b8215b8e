"""
app/services/failed_job_service.py

Operator actions on dead-lettered jobs.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.domain.pipeline import PayloadValidationError, QueueName
from app.logging_utils import log_event
from app.pipeline.queue import JobQueue
from db.models.failed_job import FailedJobRecord
from db.repositories.failed_job_repository import FailedJobRepository

logger = logging.getLogger(__name__)


class FailedJobNotFoundError(LookupError):
    pass


class FailedJobAlreadyRetriedError(ValueError):
    pass


@dataclass(frozen=True)
class RetryOutcome:
    failed_job_id: uuid.UUID
    job_id: str | None
    created: bool
    error: str | None = None


@dataclass
class BulkRetryResult:
    retried: list[RetryOutcome] = field(default_factory=list)
    errors: list[RetryOutcome] = field(default_factory=list)


class FailedJobService:
    """
    Re-enqueue failed jobs with their original payload.

    A retried record is stamped with ``retried_at`` and is not offered again;
    failed jobs are never re-enqueued automatically.
    """

    def __init__(self, *, session_factory: Callable[[], Session], job_queue: JobQueue) -> None:
        self._session_factory = session_factory
        self._job_queue = job_queue

    def list_open(self, *, queue: QueueName | None = None, limit: int = 100) -> list[FailedJobRecord]:
        with self._session_factory() as db:
            records = FailedJobRepository(db).list_open(queue=queue.value if queue else None, limit=limit)
            for record in records:
                db.expunge(record)
            return records

    def retry(self, failed_job_id: uuid.UUID, *, triggered_by: str | None = None) -> RetryOutcome:
        """
        Raises:
            FailedJobNotFoundError: unknown id.
            FailedJobAlreadyRetriedError: the record was already re-enqueued.
            PayloadValidationError: the stored payload no longer validates.
        """

        with self._session_factory() as db, db.begin():
            repo = FailedJobRepository(db)
            record = repo.get(failed_job_id)
            if record is None:
                raise FailedJobNotFoundError(str(failed_job_id))
            if not repo.claim_retry(failed_job_id):
                raise FailedJobAlreadyRetriedError(str(failed_job_id))
            queue_name = record.queue
            payload = dict(record.payload)
            job_key = record.job_key

        # The record is claimed before the enqueue commits; a failed enqueue releases it.
        try:
            result = self._job_queue.enqueue(
                QueueName(queue_name),
                payload,
                job_key=job_key,
                triggered_by=triggered_by,
            )
        except Exception:
            with self._session_factory() as db, db.begin():
                FailedJobRepository(db).release_retry(failed_job_id)
            raise

        log_event(
            logger,
            logging.INFO,
            "failed_job_retried",
            failed_job_id=failed_job_id,
            queue=queue_name,
            job_id=result.job_id,
            created=result.created,
            triggered_by=triggered_by,
        )
        return RetryOutcome(failed_job_id=failed_job_id, job_id=result.job_id, created=result.created)

    def retry_all(
        self,
        *,
        queue: QueueName | None = None,
        limit: int = 100,
        triggered_by: str | None = None,
    ) -> BulkRetryResult:
        outcome = BulkRetryResult()
        for record in self.list_open(queue=queue, limit=limit):
            try:
                outcome.retried.append(self.retry(record.id, triggered_by=triggered_by))
            except (FailedJobNotFoundError, FailedJobAlreadyRetriedError, PayloadValidationError) as exc:
                outcome.errors.append(
                    RetryOutcome(failed_job_id=record.id, job_id=None, created=False, error=str(exc))
                )
        return outcome
