"""
tests/test_worker.py

Pytest unit tests for JobRunner, QueueWorker, WorkerPool and the backoff helper.

Stage handlers are scripted fakes; the queue is the in-memory backend
driven by a fake clock, so retry timing is fully deterministic.

Coverage
--------
- Backoff growth and jitter bounds
- Success enqueues follow-ups with the parent's priority and trigger
- TRANSIENT failures retry at base, 2*base until attempts are exhausted
- Exhausted, PERMANENT and TERMINAL failures: dead-letter row, POI FAILED
- Exceptions are retried and their stack trace is kept
- Terminal-failure hook runs exactly once
- Notify failures never fail the POI
- Per-queue concurrency and synchronous draining
- Started workers poll, run jobs on their pool and stop cleanly
- A database error while handing off follow-ups retries the attempt
- Jobs abandoned past their lease are requeued; a lease lost on the last
  attempt fails the job
"""

from __future__ import annotations

import threading
import uuid
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.config import PipelineSettings
from app.domain.pipeline import CrawlJobPayload, EnrichJobPayload, NotifyJobPayload, QueueName
from app.pipeline.backoff import compute_backoff
from app.pipeline.queue import InMemoryQueueBackend, JobQueue
from app.pipeline.results import CallResult
from app.pipeline.stages import FollowUp, StageHandler, StageHandlers, StageOutput
from app.pipeline.worker import JobOutcome, JobRunner, QueueWorker, WorkerPool, queue_concurrency
from db.models.failed_job import FailedJobRecord
from db.models.pipeline_job import PipelineJobStatus
from db.models.poi import POI, POIAuditStatus


class ScriptedStage(StageHandler):
    """Returns the scripted results in order; the last one repeats."""

    def __init__(self, queue: QueueName, *results: Any) -> None:
        self.queue = queue
        self.results = list(results) or [CallResult.success(StageOutput())]
        self.calls: list[tuple[str, int]] = []
        self.terminal_failures: list[str] = []

    def run(self, job, payload):
        self.calls.append((job.id, job.attempts_made))
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, Exception):
            raise item
        return item

    def on_terminal_failure(self, job, payload, error: str) -> None:
        self.terminal_failures.append(error)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> PipelineSettings:
    return PipelineSettings(
        worker_concurrency=4,
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_jitter_ratio=0.1,
    )


@pytest.fixture()
def backend() -> InMemoryQueueBackend:
    return InMemoryQueueBackend()


@pytest.fixture()
def job_queue(backend, settings, clock) -> JobQueue:
    return JobQueue(backend=backend, settings=settings, clock=clock)


def _handlers(**overrides: StageHandler) -> StageHandlers:
    stages = {queue.value: ScriptedStage(queue) for queue in QueueName}
    stages.update(overrides)
    return StageHandlers(**stages)


def _runner(job_queue, handlers, session_factory, settings, rng=lambda: 0.5) -> JobRunner:
    return JobRunner(
        job_queue=job_queue,
        handlers=handlers,
        session_factory=session_factory,
        settings=settings,
        rng=rng,
    )


def _failed_rows(session_factory) -> list[FailedJobRecord]:
    with session_factory() as db:
        return list(db.scalars(select(FailedJobRecord)).all())


def _poi(session_factory, poi_id: uuid.UUID) -> POI:
    with session_factory() as db:
        return db.get(POI, poi_id)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestComputeBackoff:
    def test_doubles_per_attempt_without_jitter(self) -> None:
        delays = [compute_backoff(n, base_seconds=1.0, jitter_ratio=0.0) for n in (1, 2, 3)]
        assert delays == [1.0, 2.0, 4.0]

    @pytest.mark.parametrize("rng_value, expected", [(0.0, 0.9), (0.5, 1.0), (1.0, 1.1)])
    def test_jitter_bounds(self, rng_value: float, expected: float) -> None:
        delay = compute_backoff(1, base_seconds=1.0, jitter_ratio=0.1, rng=lambda: rng_value)
        assert delay == pytest.approx(expected)

    def test_no_delay_before_first_attempt(self) -> None:
        assert compute_backoff(0, base_seconds=1.0) == 0.0
        assert compute_backoff(2, base_seconds=0.0) == 0.0


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


class TestSuccess:
    def test_follow_ups_inherit_priority_and_trigger(self, job_queue, session_factory, settings) -> None:
        poi_id = uuid.uuid4()
        crawl = ScriptedStage(
            QueueName.CRAWL,
            CallResult.success(StageOutput(follow_ups=[FollowUp(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))])),
        )
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id), priority=2, triggered_by="ADMIN:ops")

        outcome = runner.process(job_queue.reserve(QueueName.CRAWL))

        assert outcome == JobOutcome.COMPLETED
        follow_up = job_queue.reserve(QueueName.ENRICH)
        assert follow_up.payload["poi_id"] == str(poi_id)
        assert follow_up.priority == 2
        assert follow_up.triggered_by == "ADMIN:ops"
        assert job_queue.counts(QueueName.CRAWL).completed == 1


# ---------------------------------------------------------------------------
# Retries and terminal failures
# ---------------------------------------------------------------------------


class TestFailurePolicy:
    def test_transient_failure_retries_with_backoff_then_fails(
        self, job_queue, backend, session_factory, settings, clock, make_poi
    ) -> None:
        poi_id = make_poi()
        crawl = ScriptedStage(QueueName.CRAWL, CallResult.transient("timeout"))
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id))
        start = clock.now

        attempt_times = []
        outcomes = []
        for expected_delay in (1.0, 2.0, None):
            job = job_queue.reserve(QueueName.CRAWL)
            attempt_times.append((clock.now - start).total_seconds())
            outcomes.append(runner.process(job))
            if expected_delay is not None:
                clock.advance(expected_delay - 0.01)
                assert job_queue.reserve(QueueName.CRAWL) is None
                clock.advance(0.01)

        assert attempt_times == pytest.approx([0.0, 1.0, 3.0])
        assert outcomes == [JobOutcome.RETRY, JobOutcome.RETRY, JobOutcome.FAILED]
        assert [attempt for _, attempt in crawl.calls] == [1, 2, 3]
        assert backend.status_of(job.id) == PipelineJobStatus.FAILED

        rows = _failed_rows(session_factory)
        assert len(rows) == 1
        assert rows[0].queue == "crawl"
        assert rows[0].attempts_made == 3
        assert rows[0].error == "timeout"
        assert rows[0].payload["poi_id"] == str(poi_id)

        poi = _poi(session_factory, poi_id)
        assert poi.audit_status == POIAuditStatus.FAILED
        assert poi.last_error == "timeout"
        assert crawl.terminal_failures == ["timeout"]

    def test_permanent_failure_is_not_retried(self, job_queue, session_factory, settings, make_poi) -> None:
        poi_id = make_poi()
        enrich = ScriptedStage(QueueName.ENRICH, CallResult.permanent("bad_request", detail="missing name"))
        runner = _runner(job_queue, _handlers(enrich=enrich), session_factory, settings)
        job_queue.enqueue(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))

        outcome = runner.process(job_queue.reserve(QueueName.ENRICH))

        assert outcome == JobOutcome.FAILED
        assert len(enrich.calls) == 1
        assert _failed_rows(session_factory)[0].error == "bad_request: missing name"

    def test_terminal_failure_is_not_retried(self, job_queue, session_factory, settings) -> None:
        crawl = ScriptedStage(QueueName.CRAWL, CallResult.terminal("poi_not_found"))
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))

        assert runner.process(job_queue.reserve(QueueName.CRAWL)) == JobOutcome.FAILED
        assert job_queue.reserve(QueueName.CRAWL) is None

    def test_exception_is_retried_and_stack_trace_kept(self, job_queue, session_factory, settings, clock) -> None:
        crawl = ScriptedStage(QueueName.CRAWL, RuntimeError("parser exploded"))
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))

        outcomes = []
        for _ in range(3):
            outcomes.append(runner.process(job_queue.reserve(QueueName.CRAWL)))
            clock.advance(10)

        assert outcomes == [JobOutcome.RETRY, JobOutcome.RETRY, JobOutcome.FAILED]
        row = _failed_rows(session_factory)[0]
        assert row.error == "RuntimeError: parser exploded"
        assert "Traceback" in row.stack_trace
        assert "parser exploded" in row.stack_trace

    def test_invalid_stored_payload_fails_immediately(self, job_queue, backend, session_factory, settings, clock) -> None:
        crawl = ScriptedStage(QueueName.CRAWL)
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        backend.add(
            queue=QueueName.CRAWL,
            job_key="crawl:broken",
            payload={"poi_id": "not-a-uuid"},
            priority=5,
            max_attempts=3,
            available_at=clock.now,
            triggered_by=None,
        )

        outcome = runner.process(job_queue.reserve(QueueName.CRAWL))

        assert outcome == JobOutcome.FAILED
        assert crawl.calls == []
        assert crawl.terminal_failures == []
        assert _failed_rows(session_factory)[0].error.startswith("invalid_payload")

    def test_notify_failure_leaves_poi_status(self, job_queue, session_factory, settings, make_poi) -> None:
        poi_id = make_poi()
        notify = ScriptedStage(QueueName.NOTIFY, CallResult.terminal("template_missing"))
        runner = _runner(job_queue, _handlers(notify=notify), session_factory, settings)
        job_queue.enqueue(QueueName.NOTIFY, NotifyJobPayload(poi_id=poi_id, audit_record_id=uuid.uuid4()))

        assert runner.process(job_queue.reserve(QueueName.NOTIFY)) == JobOutcome.FAILED

        assert _poi(session_factory, poi_id).audit_status == POIAuditStatus.PENDING
        assert notify.terminal_failures == ["template_missing"]

    def test_hook_error_does_not_escape(self, job_queue, session_factory, settings) -> None:
        class ExplodingHook(ScriptedStage):
            def on_terminal_failure(self, job, payload, error: str) -> None:
                raise RuntimeError("hook failed")

        crawl = ExplodingHook(QueueName.CRAWL, CallResult.terminal("gone"))
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))

        assert runner.process(job_queue.reserve(QueueName.CRAWL)) == JobOutcome.FAILED


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class TestWorkers:
    @pytest.mark.parametrize(
        "queue, base, expected",
        [
            (QueueName.CRAWL, 5, 5),
            (QueueName.AUDIT, 5, 3),
            (QueueName.AUDIT, 1, 1),
            (QueueName.NOTIFY, 0, 1),
        ],
    )
    def test_queue_concurrency(self, queue: QueueName, base: int, expected: int) -> None:
        assert queue_concurrency(queue, base) == expected

    def test_run_once_and_drain(self, job_queue, session_factory, settings) -> None:
        crawl = ScriptedStage(QueueName.CRAWL)
        worker = QueueWorker(
            queue=QueueName.CRAWL,
            job_queue=job_queue,
            runner=_runner(job_queue, _handlers(crawl=crawl), session_factory, settings),
            concurrency=2,
        )
        assert worker.run_once() is None

        for _ in range(3):
            job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))

        assert worker.drain() == 3
        assert len(crawl.calls) == 3
        assert worker.active == 0
        assert worker.running is False

    def test_pool_drains_follow_up_chain(self, job_queue, session_factory, settings) -> None:
        poi_id = uuid.uuid4()
        crawl = ScriptedStage(
            QueueName.CRAWL,
            CallResult.success(StageOutput(follow_ups=[FollowUp(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))])),
        )
        enrich = ScriptedStage(QueueName.ENRICH)
        pool = WorkerPool(
            job_queue=job_queue,
            runner=_runner(job_queue, _handlers(crawl=crawl, enrich=enrich), session_factory, settings),
            settings=settings,
        )
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id))

        assert pool.drain() == 2
        assert len(enrich.calls) == 1
        assert pool.workers[QueueName.AUDIT].concurrency == 2

    def test_started_worker_runs_jobs_until_stopped(self, job_queue, session_factory, settings) -> None:
        done = threading.Event()

        class CountingStage(ScriptedStage):
            def run(self, job, payload):
                result = super().run(job, payload)
                if len(self.calls) >= 3:
                    done.set()
                return result

        crawl = CountingStage(QueueName.CRAWL)
        worker = QueueWorker(
            queue=QueueName.CRAWL,
            job_queue=job_queue,
            runner=_runner(job_queue, _handlers(crawl=crawl), session_factory, settings),
            concurrency=2,
            poll_interval_seconds=0.01,
        )
        for _ in range(3):
            job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))

        worker.start()
        try:
            assert done.wait(timeout=5)
        finally:
            worker.stop(wait=True)

        assert worker.running is False
        assert job_queue.counts(QueueName.CRAWL).completed == 3


# ---------------------------------------------------------------------------
# Hand-off errors and expired leases
# ---------------------------------------------------------------------------


class FlakyEnqueueBackend(InMemoryQueueBackend):
    """Raises a database error on the first ``fail_times`` enqueues to ``queue``."""

    def __init__(self, queue: QueueName, fail_times: int = 1) -> None:
        super().__init__()
        self.queue = queue
        self.fail_times = fail_times

    def add(self, *, queue, **kwargs):
        if queue == self.queue and self.fail_times > 0:
            self.fail_times -= 1
            raise OperationalError("INSERT INTO pipeline_jobs", {}, Exception("database is locked"))
        return super().add(queue=queue, **kwargs)


class TestRecovery:
    def test_follow_up_enqueue_error_retries_the_job(self, session_factory, settings, clock) -> None:
        backend = FlakyEnqueueBackend(QueueName.ENRICH)
        job_queue = JobQueue(backend=backend, settings=settings, clock=clock)
        poi_id = uuid.uuid4()
        crawl = ScriptedStage(
            QueueName.CRAWL,
            CallResult.success(StageOutput(follow_ups=[FollowUp(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))])),
        )
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id))
        job = job_queue.reserve(QueueName.CRAWL)

        first = runner.process(job)

        assert first == JobOutcome.RETRY
        assert backend.status_of(job.id) == PipelineJobStatus.DELAYED
        assert job_queue.reserve(QueueName.ENRICH) is None

        clock.advance(5)
        second = runner.process(job_queue.reserve(QueueName.CRAWL))

        assert second == JobOutcome.COMPLETED
        assert backend.status_of(job.id) == PipelineJobStatus.COMPLETED
        assert job_queue.reserve(QueueName.ENRICH).payload["poi_id"] == str(poi_id)
        assert _failed_rows(session_factory) == []

    def test_hand_off_error_on_last_attempt_is_recorded(self, session_factory, settings, clock, make_poi) -> None:
        backend = FlakyEnqueueBackend(QueueName.ENRICH, fail_times=3)
        job_queue = JobQueue(backend=backend, settings=settings, clock=clock)
        poi_id = make_poi()
        crawl = ScriptedStage(
            QueueName.CRAWL,
            CallResult.success(StageOutput(follow_ups=[FollowUp(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))])),
        )
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id))

        outcomes = []
        for _ in range(3):
            outcomes.append(runner.process(job_queue.reserve(QueueName.CRAWL)))
            clock.advance(10)

        assert outcomes == [JobOutcome.RETRY, JobOutcome.RETRY, JobOutcome.FAILED]
        row = _failed_rows(session_factory)[0]
        assert row.error.startswith("hand_off_failed: OperationalError")
        assert "database is locked" in row.stack_trace
        assert _poi(session_factory, poi_id).audit_status == POIAuditStatus.FAILED

    def test_abandoned_job_is_requeued_after_lease(self, job_queue, session_factory, settings, clock) -> None:
        crawl = ScriptedStage(QueueName.CRAWL)
        worker = QueueWorker(
            queue=QueueName.CRAWL,
            job_queue=job_queue,
            runner=_runner(job_queue, _handlers(crawl=crawl), session_factory, settings),
            concurrency=1,
        )
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))
        abandoned = job_queue.reserve(QueueName.CRAWL)

        clock.advance(settings.lease_seconds - 1)
        assert worker.requeue_expired() == []
        clock.advance(1)
        requeued = worker.requeue_expired()

        assert requeued == [abandoned.id]
        assert worker.run_once() == JobOutcome.COMPLETED
        assert crawl.calls == [(abandoned.id, 2)]

    def test_lease_expiring_on_last_attempt_fails_the_job(
        self, job_queue, session_factory, settings, clock, make_poi
    ) -> None:
        poi_id = make_poi()
        crawl = ScriptedStage(QueueName.CRAWL)
        runner = _runner(job_queue, _handlers(crawl=crawl), session_factory, settings)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=poi_id))
        for _ in range(settings.max_attempts):
            job_queue.reserve(QueueName.CRAWL)
            clock.advance(settings.lease_seconds)
            job_queue.requeue_expired(QueueName.CRAWL)

        outcome = runner.process(job_queue.reserve(QueueName.CRAWL))

        assert outcome == JobOutcome.FAILED
        assert crawl.calls == []
        assert _failed_rows(session_factory)[0].error == "attempts_exhausted: lease_expired"
        assert _poi(session_factory, poi_id).audit_status == POIAuditStatus.FAILED

    def test_started_worker_reaps_expired_leases(self, job_queue, session_factory, settings, clock) -> None:
        done = threading.Event()

        class SignallingStage(ScriptedStage):
            def run(self, job, payload):
                result = super().run(job, payload)
                done.set()
                return result

        crawl = SignallingStage(QueueName.CRAWL)
        job_queue.enqueue(QueueName.CRAWL, CrawlJobPayload(poi_id=uuid.uuid4()))
        job_queue.reserve(QueueName.CRAWL)
        clock.advance(settings.lease_seconds)
        worker = QueueWorker(
            queue=QueueName.CRAWL,
            job_queue=job_queue,
            runner=_runner(job_queue, _handlers(crawl=crawl), session_factory, settings),
            concurrency=1,
            poll_interval_seconds=0.01,
        )

        worker.start()
        try:
            assert done.wait(timeout=5)
        finally:
            worker.stop(wait=True)

        assert [attempt for _, attempt in crawl.calls] == [2]
