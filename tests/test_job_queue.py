"""
tests/test_job_queue.py

Pytest unit tests for JobQueue and both queue backends.

Every backend test runs twice: against the in-memory backend and against
the SQLAlchemy backend on SQLite.

Coverage
--------
- Job key de-duplication while a job is in flight
- Re-enqueue after completion or failure
- Priority ordering (lower number first) and FIFO within a priority
- Delayed retries become available only after their delay
- Active jobs whose lease expired go back to the queue
- Attempt counting and per-queue counts
- Payload validation at the queue boundary
- Partial unique index on in-flight job keys
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from app.config import PipelineSettings
from app.domain.pipeline import (
    CrawlJobPayload,
    EnrichJobPayload,
    PayloadValidationError,
    QueueName,
    job_key_for,
)
from app.pipeline.queue import InMemoryQueueBackend, JobQueue, SqlAlchemyQueueBackend
from db.models.pipeline_job import PipelineJob, PipelineJobStatus


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "database"])
def job_queue(request, session_factory, clock) -> JobQueue:
    if request.param == "memory":
        backend = InMemoryQueueBackend()
    else:
        backend = SqlAlchemyQueueBackend(session_factory)
    return JobQueue(backend=backend, settings=PipelineSettings(max_attempts=3, default_priority=5), clock=clock)


def _crawl(poi_id: uuid.UUID | None = None) -> CrawlJobPayload:
    return CrawlJobPayload(poi_id=poi_id or uuid.uuid4())


# ---------------------------------------------------------------------------
# De-duplication
# ---------------------------------------------------------------------------


class TestDeduplication:
    def test_second_enqueue_returns_existing_job(self, job_queue) -> None:
        payload = _crawl()

        first = job_queue.enqueue(QueueName.CRAWL, payload)
        second = job_queue.enqueue(QueueName.CRAWL, payload)

        assert first.created is True
        assert second.created is False
        assert second.job_id == first.job_id
        assert job_queue.counts(QueueName.CRAWL).waiting == 1

    def test_active_job_still_deduplicates(self, job_queue) -> None:
        payload = _crawl()
        first = job_queue.enqueue(QueueName.CRAWL, payload)
        job_queue.reserve(QueueName.CRAWL)

        again = job_queue.enqueue(QueueName.CRAWL, payload)

        assert again.created is False
        assert again.job_id == first.job_id

    def test_new_job_after_completion(self, job_queue) -> None:
        payload = _crawl()
        first = job_queue.enqueue(QueueName.CRAWL, payload)
        job_queue.complete(job_queue.reserve(QueueName.CRAWL))

        again = job_queue.enqueue(QueueName.CRAWL, payload)

        assert again.created is True
        assert again.job_id != first.job_id

    def test_new_job_after_failure(self, job_queue) -> None:
        payload = _crawl()
        job_queue.enqueue(QueueName.CRAWL, payload)
        job_queue.fail(job_queue.reserve(QueueName.CRAWL), error="boom")

        assert job_queue.enqueue(QueueName.CRAWL, payload).created is True

    def test_same_poi_on_different_queues_is_not_a_duplicate(self, job_queue) -> None:
        poi_id = uuid.uuid4()

        crawl = job_queue.enqueue(QueueName.CRAWL, _crawl(poi_id))
        enrich = job_queue.enqueue(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))

        assert crawl.created and enrich.created
        assert crawl.job_key == job_key_for(QueueName.CRAWL, poi_id)
        assert enrich.job_key == f"enrich:{poi_id}"

    def test_explicit_job_key(self, job_queue) -> None:
        result = job_queue.enqueue(QueueName.CRAWL, _crawl(), job_key="crawl:manual-1")

        assert result.job_key == "crawl:manual-1"


# ---------------------------------------------------------------------------
# Reservation order and retries
# ---------------------------------------------------------------------------


class TestReservation:
    def test_lower_priority_number_runs_first(self, job_queue) -> None:
        routine = _crawl()
        urgent = _crawl()
        job_queue.enqueue(QueueName.CRAWL, routine, priority=5)
        job_queue.enqueue(QueueName.CRAWL, urgent, priority=1)

        job = job_queue.reserve(QueueName.CRAWL)

        assert job.payload["poi_id"] == str(urgent.poi_id)
        assert job.priority == 1

    def test_fifo_within_priority(self, job_queue, clock) -> None:
        older = _crawl()
        newer = _crawl()
        job_queue.enqueue(QueueName.CRAWL, older)
        clock.advance(1)
        job_queue.enqueue(QueueName.CRAWL, newer)

        assert job_queue.reserve(QueueName.CRAWL).payload["poi_id"] == str(older.poi_id)
        assert job_queue.reserve(QueueName.CRAWL).payload["poi_id"] == str(newer.poi_id)

    def test_empty_queue(self, job_queue) -> None:
        assert job_queue.reserve(QueueName.AUDIT) is None

    def test_reserve_counts_attempts(self, job_queue) -> None:
        job_queue.enqueue(QueueName.CRAWL, _crawl(), triggered_by="EDITOR:alice")

        job = job_queue.reserve(QueueName.CRAWL)

        assert job.attempts_made == 1
        assert job.max_attempts == 3
        assert job.triggered_by == "EDITOR:alice"
        assert job_queue.reserve(QueueName.CRAWL) is None

    def test_delayed_job_waits_for_its_time(self, job_queue, clock) -> None:
        job_queue.enqueue(QueueName.CRAWL, _crawl())
        job = job_queue.reserve(QueueName.CRAWL)

        job_queue.retry_later(job, delay_seconds=2.0, error="timeout")

        assert job_queue.reserve(QueueName.CRAWL) is None
        assert job_queue.counts(QueueName.CRAWL).delayed == 1
        clock.advance(2.0)
        retried = job_queue.reserve(QueueName.CRAWL)
        assert retried is not None
        assert retried.id == job.id
        assert retried.attempts_made == 2

    def test_expired_lease_returns_job_to_queue(self, job_queue, clock) -> None:
        payload = _crawl()
        job_queue.enqueue(QueueName.CRAWL, payload)
        abandoned = job_queue.reserve(QueueName.CRAWL)
        lease = job_queue.settings.lease_seconds

        clock.advance(lease - 1)
        assert job_queue.requeue_expired(QueueName.CRAWL) == []
        assert job_queue.enqueue(QueueName.CRAWL, payload).created is False

        clock.advance(1)
        requeued = job_queue.requeue_expired(QueueName.CRAWL)

        assert requeued == [abandoned.id]
        counts = job_queue.counts(QueueName.CRAWL)
        assert (counts.active, counts.delayed) == (0, 1)
        retried = job_queue.reserve(QueueName.CRAWL)
        assert retried.id == abandoned.id
        assert retried.attempts_made == 2

    def test_finished_jobs_are_not_requeued(self, job_queue, clock) -> None:
        job_queue.enqueue(QueueName.CRAWL, _crawl())
        job_queue.complete(job_queue.reserve(QueueName.CRAWL))

        clock.advance(job_queue.settings.lease_seconds * 2)

        assert job_queue.requeue_expired(QueueName.CRAWL) == []

    def test_counts(self, job_queue) -> None:
        for _ in range(3):
            job_queue.enqueue(QueueName.CRAWL, _crawl())
        job_queue.complete(job_queue.reserve(QueueName.CRAWL))
        job_queue.reserve(QueueName.CRAWL)

        counts = job_queue.counts(QueueName.CRAWL)

        assert (counts.waiting, counts.active, counts.completed) == (1, 1, 1)
        assert counts.pending == 1
        assert set(job_queue.all_counts()) == set(QueueName)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_dict_payload_is_validated(self, job_queue) -> None:
        poi_id = uuid.uuid4()

        job_queue.enqueue(QueueName.CRAWL, {"poi_id": str(poi_id), "max_depth": 2})

        job = job_queue.reserve(QueueName.CRAWL)
        assert job.payload == {"poi_id": str(poi_id), "url": None, "max_depth": 2, "schedule_name": None}

    def test_missing_field_is_rejected(self, job_queue) -> None:
        with pytest.raises(PayloadValidationError):
            job_queue.enqueue(QueueName.NOTIFY, {"poi_id": str(uuid.uuid4())})

    def test_unknown_field_is_rejected(self, job_queue) -> None:
        with pytest.raises(PayloadValidationError):
            job_queue.enqueue(QueueName.CRAWL, {"poi_id": str(uuid.uuid4()), "depth": 2})

    def test_model_for_other_queue_is_rejected(self, job_queue) -> None:
        with pytest.raises(PayloadValidationError):
            job_queue.enqueue(QueueName.AUDIT, _crawl())

        assert job_queue.counts(QueueName.AUDIT).pending == 0


# ---------------------------------------------------------------------------
# Database constraint
# ---------------------------------------------------------------------------


class TestInFlightIndex:
    def _row(self, status: str) -> PipelineJob:
        return PipelineJob(
            queue="crawl",
            job_key="crawl:fixed",
            payload={"poi_id": str(uuid.uuid4())},
            status=status,
        )

    def test_two_in_flight_rows_with_same_key_conflict(self, session_factory) -> None:
        with session_factory() as db:
            db.add(self._row(PipelineJobStatus.WAITING))
            db.commit()
            db.add(self._row(PipelineJobStatus.ACTIVE))
            with pytest.raises(IntegrityError):
                db.commit()

    def test_finished_rows_do_not_conflict(self, session_factory) -> None:
        with session_factory() as db, db.begin():
            db.add(self._row(PipelineJobStatus.COMPLETED))
            db.add(self._row(PipelineJobStatus.FAILED))
            db.add(self._row(PipelineJobStatus.WAITING))
