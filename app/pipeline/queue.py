"""
Named job queues with key-based de-duplication and delayed retries.

``JobQueue`` is the only way callers submit work. It validates payloads
against the queue's model, derives the job key and hands the job to a
backend: the database backend for real deployments, the in-memory one for
single-process runs and tests.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import PipelineSettings
from app.domain.pipeline import QueueName, job_key_for, validate_payload
from app.logging_utils import log_event
from db.models.pipeline_job import PipelineJob, PipelineJobStatus

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "lease_expired"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QueuedJob:
    id: str
    queue: QueueName
    job_key: str
    payload: dict[str, Any]
    priority: int
    attempts_made: int
    max_attempts: int
    triggered_by: str | None = None


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    job_key: str
    created: bool


@dataclass(frozen=True)
class QueueCounts:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def pending(self) -> int:
        return self.waiting + self.delayed


class QueueBackend(ABC):
    """
    Storage for queued jobs. Implementations must make ``add`` and
    ``reserve`` atomic with respect to concurrent callers.
    """

    @abstractmethod
    def add(
        self,
        *,
        queue: QueueName,
        job_key: str,
        payload: dict[str, Any],
        priority: int,
        max_attempts: int,
        available_at: datetime,
        triggered_by: str | None,
    ) -> EnqueueResult:
        """
        Insert a waiting job unless one with ``job_key`` is already in flight.
        """

    @abstractmethod
    def reserve(self, queue: QueueName, now: datetime, lease_expires_at: datetime) -> QueuedJob | None:
        """
        Claim the most urgent due job: lowest priority number, then oldest.
        The claim holds until ``lease_expires_at``.
        """

    @abstractmethod
    def requeue_expired(self, queue: QueueName, now: datetime) -> list[str]:
        """
        Move active jobs whose lease ran out back to delayed, due at ``now``.
        Returns the ids of the requeued jobs.
        """

    @abstractmethod
    def complete(self, job_id: str, now: datetime) -> None: ...

    @abstractmethod
    def retry_later(self, job_id: str, available_at: datetime, error: str) -> None: ...

    @abstractmethod
    def fail(self, job_id: str, error: str, now: datetime) -> None: ...

    @abstractmethod
    def counts(self, queue: QueueName) -> QueueCounts: ...


@dataclass
class _MemoryJob:
    job: QueuedJob
    status: str
    available_at: datetime
    seq: int
    last_error: str | None = None
    finished_at: datetime | None = None
    lease_expires_at: datetime | None = None


class InMemoryQueueBackend(QueueBackend):
    def __init__(self) -> None:
        self._jobs: dict[str, _MemoryJob] = {}
        self._in_flight_keys: dict[str, str] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def add(
        self,
        *,
        queue: QueueName,
        job_key: str,
        payload: dict[str, Any],
        priority: int,
        max_attempts: int,
        available_at: datetime,
        triggered_by: str | None,
    ) -> EnqueueResult:
        with self._lock:
            existing_id = self._in_flight_keys.get(job_key)
            if existing_id is not None:
                return EnqueueResult(job_id=existing_id, job_key=job_key, created=False)

            job_id = str(uuid.uuid4())
            self._jobs[job_id] = _MemoryJob(
                job=QueuedJob(
                    id=job_id,
                    queue=queue,
                    job_key=job_key,
                    payload=payload,
                    priority=priority,
                    attempts_made=0,
                    max_attempts=max_attempts,
                    triggered_by=triggered_by,
                ),
                status=PipelineJobStatus.WAITING,
                available_at=available_at,
                seq=next(self._seq),
            )
            self._in_flight_keys[job_key] = job_id
            return EnqueueResult(job_id=job_id, job_key=job_key, created=True)

    def reserve(self, queue: QueueName, now: datetime, lease_expires_at: datetime) -> QueuedJob | None:
        with self._lock:
            candidates = [
                (record.job.priority, record.available_at, record.seq, job_id)
                for job_id, record in self._jobs.items()
                if record.job.queue == queue
                and record.status in (PipelineJobStatus.WAITING, PipelineJobStatus.DELAYED)
                and record.available_at <= now
            ]
            if not candidates:
                return None
            job_id = heapq.nsmallest(1, candidates)[0][3]
            record = self._jobs[job_id]
            record.status = PipelineJobStatus.ACTIVE
            record.lease_expires_at = lease_expires_at
            record.job = replace(record.job, attempts_made=record.job.attempts_made + 1)
            return record.job

    def requeue_expired(self, queue: QueueName, now: datetime) -> list[str]:
        requeued: list[str] = []
        with self._lock:
            for job_id, record in self._jobs.items():
                if (
                    record.job.queue == queue
                    and record.status == PipelineJobStatus.ACTIVE
                    and record.lease_expires_at is not None
                    and record.lease_expires_at <= now
                ):
                    record.status = PipelineJobStatus.DELAYED
                    record.available_at = now
                    record.lease_expires_at = None
                    record.last_error = LEASE_EXPIRED_ERROR
                    requeued.append(job_id)
        return requeued

    def complete(self, job_id: str, now: datetime) -> None:
        self._finish(job_id, PipelineJobStatus.COMPLETED, None, now)

    def retry_later(self, job_id: str, available_at: datetime, error: str) -> None:
        with self._lock:
            record = self._jobs[job_id]
            record.status = PipelineJobStatus.DELAYED
            record.available_at = available_at
            record.lease_expires_at = None
            record.last_error = error

    def fail(self, job_id: str, error: str, now: datetime) -> None:
        self._finish(job_id, PipelineJobStatus.FAILED, error, now)

    def counts(self, queue: QueueName) -> QueueCounts:
        with self._lock:
            tally: dict[str, int] = {}
            for record in self._jobs.values():
                if record.job.queue == queue:
                    tally[record.status] = tally.get(record.status, 0) + 1
        return QueueCounts(**tally)

    def status_of(self, job_id: str) -> str:
        with self._lock:
            return self._jobs[job_id].status

    def _finish(self, job_id: str, status: str, error: str | None, now: datetime) -> None:
        with self._lock:
            record = self._jobs[job_id]
            record.status = status
            record.last_error = error
            record.finished_at = now
            record.lease_expires_at = None
            if self._in_flight_keys.get(record.job.job_key) == job_id:
                del self._in_flight_keys[record.job.job_key]


class SqlAlchemyQueueBackend(QueueBackend):
    """
    Durable queue in the ``pipeline_jobs`` table.

    De-duplication relies on the partial unique index over in-flight job
    keys; reservation uses ``FOR UPDATE SKIP LOCKED`` so several worker
    processes can poll the same queue.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def add(
        self,
        *,
        queue: QueueName,
        job_key: str,
        payload: dict[str, Any],
        priority: int,
        max_attempts: int,
        available_at: datetime,
        triggered_by: str | None,
    ) -> EnqueueResult:
        with self._session_factory() as db:
            existing = self._find_in_flight(db, job_key)
            if existing is not None:
                return EnqueueResult(job_id=str(existing), job_key=job_key, created=False)

            job = PipelineJob(
                queue=queue.value,
                job_key=job_key,
                payload=payload,
                priority=priority,
                status=PipelineJobStatus.WAITING,
                attempts_made=0,
                max_attempts=max_attempts,
                available_at=available_at,
                triggered_by=triggered_by,
            )
            db.add(job)
            try:
                db.commit()
            except IntegrityError:
                # Lost the race against a concurrent enqueue of the same key.
                db.rollback()
                existing = self._find_in_flight(db, job_key)
                if existing is None:
                    raise
                return EnqueueResult(job_id=str(existing), job_key=job_key, created=False)
            return EnqueueResult(job_id=str(job.id), job_key=job_key, created=True)

    def reserve(self, queue: QueueName, now: datetime, lease_expires_at: datetime) -> QueuedJob | None:
        with self._session_factory() as db, db.begin():
            stmt = (
                select(PipelineJob)
                .where(
                    PipelineJob.queue == queue.value,
                    PipelineJob.status.in_((PipelineJobStatus.WAITING, PipelineJobStatus.DELAYED)),
                    PipelineJob.available_at <= now,
                )
                .order_by(PipelineJob.priority, PipelineJob.available_at, PipelineJob.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job = db.scalars(stmt).first()
            if job is None:
                return None
            job.status = PipelineJobStatus.ACTIVE
            job.attempts_made += 1
            job.lease_expires_at = lease_expires_at
            return QueuedJob(
                id=str(job.id),
                queue=queue,
                job_key=job.job_key,
                payload=dict(job.payload),
                priority=job.priority,
                attempts_made=job.attempts_made,
                max_attempts=job.max_attempts,
                triggered_by=job.triggered_by,
            )

    def requeue_expired(self, queue: QueueName, now: datetime) -> list[str]:
        with self._session_factory() as db, db.begin():
            stmt = (
                select(PipelineJob)
                .where(
                    PipelineJob.queue == queue.value,
                    PipelineJob.status == PipelineJobStatus.ACTIVE,
                    PipelineJob.lease_expires_at <= now,
                )
                .with_for_update(skip_locked=True)
            )
            expired = list(db.scalars(stmt).all())
            for job in expired:
                job.status = PipelineJobStatus.DELAYED
                job.available_at = now
                job.lease_expires_at = None
                job.last_error = LEASE_EXPIRED_ERROR
            return [str(job.id) for job in expired]

    def complete(self, job_id: str, now: datetime) -> None:
        with self._session_factory() as db, db.begin():
            job = db.get(PipelineJob, uuid.UUID(job_id))
            if job is not None:
                job.status = PipelineJobStatus.COMPLETED
                job.finished_at = now
                job.last_error = None
                job.lease_expires_at = None

    def retry_later(self, job_id: str, available_at: datetime, error: str) -> None:
        with self._session_factory() as db, db.begin():
            job = db.get(PipelineJob, uuid.UUID(job_id))
            if job is not None:
                job.status = PipelineJobStatus.DELAYED
                job.available_at = available_at
                job.last_error = error
                job.lease_expires_at = None

    def fail(self, job_id: str, error: str, now: datetime) -> None:
        with self._session_factory() as db, db.begin():
            job = db.get(PipelineJob, uuid.UUID(job_id))
            if job is not None:
                job.status = PipelineJobStatus.FAILED
                job.finished_at = now
                job.last_error = error
                job.lease_expires_at = None

    def counts(self, queue: QueueName) -> QueueCounts:
        with self._session_factory() as db:
            stmt = (
                select(PipelineJob.status, func.count())
                .where(PipelineJob.queue == queue.value)
                .group_by(PipelineJob.status)
            )
            tally = {status: count for status, count in db.execute(stmt).all()}
        return QueueCounts(**tally)

    @staticmethod
    def _find_in_flight(db: Session, job_key: str) -> uuid.UUID | None:
        stmt = select(PipelineJob.id).where(
            PipelineJob.job_key == job_key,
            PipelineJob.status.in_(PipelineJobStatus.IN_FLIGHT),
        )
        return db.scalars(stmt).first()


@dataclass
class JobQueue:
    """
    Validating facade over a QueueBackend.
    """

    backend: QueueBackend
    settings: PipelineSettings
    clock: Callable[[], datetime] = field(default=_utc_now)

    def enqueue(
        self,
        queue: QueueName,
        payload: BaseModel | dict[str, Any],
        *,
        priority: int | None = None,
        job_key: str | None = None,
        triggered_by: str | None = None,
    ) -> EnqueueResult:
        """
        Submit work to ``queue``.

        Re-enqueuing a key that is still waiting, delayed or active is a
        no-op returning the existing job id. Lower priority numbers run first.

        Raises:
            PayloadValidationError: if ``payload`` does not fit the queue.
        """

        model = validate_payload(queue, payload)
        key = job_key or job_key_for(queue, model.poi_id)
        result = self.backend.add(
            queue=queue,
            job_key=key,
            payload=model.model_dump(mode="json"),
            priority=self.settings.default_priority if priority is None else priority,
            max_attempts=self.settings.max_attempts,
            available_at=self.clock(),
            triggered_by=triggered_by,
        )
        log_event(
            logger,
            logging.INFO if result.created else logging.DEBUG,
            "job_enqueued" if result.created else "job_enqueue_deduplicated",
            queue=queue.value,
            job_id=result.job_id,
            job_key=key,
            triggered_by=triggered_by,
        )
        return result

    def reserve(self, queue: QueueName) -> QueuedJob | None:
        now = self.clock()
        return self.backend.reserve(queue, now, now + timedelta(seconds=self.settings.lease_seconds))

    def requeue_expired(self, queue: QueueName) -> list[str]:
        """
        Return jobs abandoned by a crashed or stuck worker to the queue. The
        next reservation counts as a new attempt.
        """

        job_ids = self.backend.requeue_expired(queue, self.clock())
        if job_ids:
            log_event(
                logger,
                logging.WARNING,
                "job_lease_expired",
                queue=queue.value,
                job_ids=job_ids,
            )
        return job_ids

    def complete(self, job: QueuedJob) -> None:
        self.backend.complete(job.id, self.clock())

    def retry_later(self, job: QueuedJob, *, delay_seconds: float, error: str) -> datetime:
        available_at = self.clock() + timedelta(seconds=max(0.0, delay_seconds))
        self.backend.retry_later(job.id, available_at, error)
        return available_at

    def fail(self, job: QueuedJob, *, error: str) -> None:
        self.backend.fail(job.id, error, self.clock())

    def counts(self, queue: QueueName) -> QueueCounts:
        return self.backend.counts(queue)

    def all_counts(self) -> dict[QueueName, QueueCounts]:
        return {queue: self.backend.counts(queue) for queue in QueueName}
