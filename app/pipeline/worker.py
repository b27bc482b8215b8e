"""
Queue workers.

``JobRunner`` executes one reserved job and applies the failure policy;
``QueueWorker`` polls a single queue and runs jobs on a thread pool;
``WorkerPool`` owns one worker per queue.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
import traceback
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import metrics
from app.config import PipelineSettings
from app.domain.pipeline import PayloadValidationError, QueueName, validate_payload
from app.logging_utils import log_event
from app.pipeline.backoff import compute_backoff
from app.pipeline.queue import LEASE_EXPIRED_ERROR, JobQueue, QueuedJob
from app.pipeline.results import CallResult, FailureKind
from app.pipeline.stages import StageHandlers, StageOutput
from db.models.poi import POIAuditStatus
from db.repositories.failed_job_repository import FailedJobRepository
from db.repositories.poi_repository import POIRepository

logger = logging.getLogger(__name__)


class JobOutcome:
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"


# Terminal failures on these queues leave the POI in FAILED.
_POI_STAGES = (QueueName.CRAWL, QueueName.ENRICH, QueueName.AUDIT)


class JobRunner:
    """
    Runs one attempt of a job and decides what happens next.

    Successful attempts enqueue their follow-up jobs and complete; an error
    during that hand-off counts as a TRANSIENT failure of the attempt. TRANSIENT
    failures (and unexpected exceptions) are retried with exponential
    backoff until ``max_attempts`` is reached; PERMANENT and TERMINAL
    failures end the job at once. A job that fails for good is written to
    the failed-job store and its stage hook runs.
    """

    def __init__(
        self,
        *,
        job_queue: JobQueue,
        handlers: StageHandlers,
        session_factory: Callable[[], Session],
        settings: PipelineSettings,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._job_queue = job_queue
        self._handlers = handlers
        self._session_factory = session_factory
        self._settings = settings
        self._rng = rng

    def process(self, job: QueuedJob) -> str:
        stack_trace: str | None = None
        try:
            payload = validate_payload(job.queue, job.payload)
        except PayloadValidationError as exc:
            return self._fail(job, None, f"invalid_payload: {exc}", None)

        if job.attempts_made > job.max_attempts:
            # The lease ran out during the final attempt.
            return self._fail(job, payload, f"attempts_exhausted: {LEASE_EXPIRED_ERROR}", None)

        handler = self._handlers.handler_for(job.queue)
        log_event(
            logger,
            logging.INFO,
            "job_started",
            queue=job.queue.value,
            job_id=job.id,
            poi_id=payload.poi_id,
            attempt=job.attempts_made,
            max_attempts=job.max_attempts,
        )
        try:
            result: CallResult[StageOutput] = handler.run(job, payload)
        except Exception as exc:
            stack_trace = traceback.format_exc()
            logger.exception("Stage raised queue=%s job_id=%s", job.queue.value, job.id)
            result = CallResult.transient(type(exc).__name__, detail=str(exc))

        if result.ok:
            output = result.unwrap()
            try:
                self._hand_off(job, output)
            except Exception as exc:
                stack_trace = traceback.format_exc()
                logger.exception("Hand-off failed queue=%s job_id=%s", job.queue.value, job.id)
                result = CallResult.transient("hand_off_failed", detail=f"{type(exc).__name__}: {exc}")
            else:
                return self._record_completed(job, output)

        error = f"{result.error}: {result.detail}" if result.detail else str(result.error)
        if result.failure == FailureKind.TRANSIENT and job.attempts_made < job.max_attempts:
            delay = compute_backoff(
                job.attempts_made,
                base_seconds=self._settings.backoff_base_seconds,
                jitter_ratio=self._settings.backoff_jitter_ratio,
                rng=self._rng,
            )
            self._job_queue.retry_later(job, delay_seconds=delay, error=error)
            metrics.QUEUE_FAILED_TOTAL.labels(queue=job.queue.value, outcome="retry").inc()
            log_event(
                logger,
                logging.WARNING,
                "job_retry_scheduled",
                queue=job.queue.value,
                job_id=job.id,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
                wait_seconds=round(delay, 3),
                error=error,
            )
            return JobOutcome.RETRY

        return self._fail(job, payload, error, stack_trace)

    def _hand_off(self, job: QueuedJob, output: StageOutput) -> None:
        # Follow-up keys make a repeated hand-off a no-op for jobs still queued.
        for follow_up in output.follow_ups:
            self._job_queue.enqueue(
                follow_up.queue,
                follow_up.payload,
                priority=job.priority,
                triggered_by=job.triggered_by,
            )
        self._job_queue.complete(job)

    def _record_completed(self, job: QueuedJob, output: StageOutput) -> str:
        metrics.QUEUE_COMPLETED_TOTAL.labels(queue=job.queue.value).inc()
        log_event(
            logger,
            logging.INFO,
            "job_completed",
            queue=job.queue.value,
            job_id=job.id,
            attempt=job.attempts_made,
            follow_ups=[item.queue.value for item in output.follow_ups],
            **output.summary,
        )
        return JobOutcome.COMPLETED

    def _fail(self, job: QueuedJob, payload, error: str, stack_trace: str | None) -> str:
        self._job_queue.fail(job, error=error)
        metrics.QUEUE_FAILED_TOTAL.labels(queue=job.queue.value, outcome="terminal").inc()
        log_event(
            logger,
            logging.ERROR,
            "job_failed",
            queue=job.queue.value,
            job_id=job.id,
            attempts_made=job.attempts_made,
            error=error,
        )

        try:
            with self._session_factory() as db, db.begin():
                FailedJobRepository(db).create(
                    queue=job.queue.value,
                    job_id=job.id,
                    job_key=job.job_key,
                    payload=job.payload,
                    error=error,
                    stack_trace=stack_trace,
                    attempts_made=job.attempts_made,
                    max_attempts=job.max_attempts,
                )
                if payload is not None and job.queue in _POI_STAGES:
                    pois = POIRepository(db)
                    poi = pois.get(payload.poi_id)
                    if poi is not None:
                        pois.set_status(poi, POIAuditStatus.FAILED, error=error)
        except SQLAlchemyError:
            logger.exception("Failed to record failed job queue=%s job_id=%s", job.queue.value, job.id)

        if payload is not None:
            try:
                self._handlers.handler_for(job.queue).on_terminal_failure(job, payload, error)
            except Exception:
                logger.exception("Terminal-failure hook raised queue=%s job_id=%s", job.queue.value, job.id)
        return JobOutcome.FAILED


class QueueWorker:
    """
    Polls one queue and runs up to ``concurrency`` jobs at a time.

    Every ``lease_reaper_interval_seconds`` the poller also returns jobs
    whose lease expired (a worker crashed or hung mid-job) to the queue.
    """

    def __init__(
        self,
        *,
        queue: QueueName,
        job_queue: JobQueue,
        runner: JobRunner,
        concurrency: int,
        poll_interval_seconds: float = 0.5,
        lease_reaper_interval_seconds: float = 60.0,
    ) -> None:
        self.queue = queue
        self.concurrency = max(1, concurrency)
        self._job_queue = job_queue
        self._runner = runner
        self._poll_interval = max(0.01, poll_interval_seconds)
        self._reaper_interval = max(0.01, lease_reaper_interval_seconds)
        self._next_reap_at = 0.0
        self._slots = threading.BoundedSemaphore(self.concurrency)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._active = 0
        self._active_lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._active_lock:
            return self._active

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._next_reap_at = 0.0
        self._executor = ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix=f"{self.queue.value}-worker",
        )
        self._thread = threading.Thread(
            target=self._poll_loop,
            name=f"{self.queue.value}-poller",
            daemon=True,
        )
        self._thread.start()
        log_event(logger, logging.INFO, "worker_started", queue=self.queue.value, concurrency=self.concurrency)

    def stop(self, *, wait: bool = True) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=30 if wait else 0)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        log_event(logger, logging.INFO, "worker_stopped", queue=self.queue.value)

    def run_once(self) -> str | None:
        """
        Reserve and run one job synchronously. Returns the outcome, or None
        when nothing was due.
        """

        job = self._job_queue.reserve(self.queue)
        if job is None:
            return None
        return self._execute(job)

    def requeue_expired(self) -> list[str]:
        try:
            return self._job_queue.requeue_expired(self.queue)
        except SQLAlchemyError:
            logger.exception("Lease reaper failed queue=%s", self.queue.value)
            return []

    def drain(self, *, max_jobs: int = 1000) -> int:
        """Run due jobs synchronously until the queue has none left."""
        processed = 0
        while processed < max_jobs and self.run_once() is not None:
            processed += 1
        return processed

    def _poll_loop(self) -> None:
        while not self._stop.is_set():
            now = time.monotonic()
            if now >= self._next_reap_at:
                self.requeue_expired()
                self._next_reap_at = now + self._reaper_interval
            if not self._slots.acquire(timeout=self._poll_interval):
                continue
            try:
                job = self._job_queue.reserve(self.queue)
            except SQLAlchemyError:
                logger.exception("Reserve failed queue=%s", self.queue.value)
                job = None
            if job is None:
                self._slots.release()
                self._stop.wait(self._poll_interval)
                continue
            assert self._executor is not None
            self._executor.submit(self._run_slot, job)

    def _run_slot(self, job: QueuedJob) -> None:
        try:
            self._execute(job)
        except Exception:
            logger.exception("Worker crashed on job queue=%s job_id=%s", self.queue.value, job.id)
        finally:
            self._slots.release()

    def _execute(self, job: QueuedJob) -> str:
        with self._active_lock:
            self._active += 1
        metrics.QUEUE_ACTIVE.labels(queue=self.queue.value).inc()
        try:
            return self._runner.process(job)
        finally:
            metrics.QUEUE_ACTIVE.labels(queue=self.queue.value).dec()
            with self._active_lock:
                self._active -= 1


def queue_concurrency(queue: QueueName, base: int) -> int:
    """
    Per-queue concurrency. The audit queue runs at half the configured
    level, rounded up, to bound LLM spend.
    """

    if queue is QueueName.AUDIT:
        return max(1, math.ceil(base / 2))
    return max(1, base)


class WorkerPool:
    def __init__(
        self,
        *,
        job_queue: JobQueue,
        runner: JobRunner,
        settings: PipelineSettings,
        queues: tuple[QueueName, ...] = tuple(QueueName),
    ) -> None:
        self.workers: dict[QueueName, QueueWorker] = {
            queue: QueueWorker(
                queue=queue,
                job_queue=job_queue,
                runner=runner,
                concurrency=queue_concurrency(queue, settings.worker_concurrency),
                poll_interval_seconds=settings.poll_interval_seconds,
                lease_reaper_interval_seconds=settings.lease_reaper_interval_seconds,
            )
            for queue in queues
        }

    def start(self) -> None:
        for worker in self.workers.values():
            worker.start()

    def stop(self, *, wait: bool = True) -> None:
        for worker in self.workers.values():
            worker.stop(wait=wait)

    def drain(self, *, max_rounds: int = 100) -> int:
        """
        Synchronously run every due job across all queues, in pipeline order,
        until a full round processes nothing.
        """

        total = 0
        for _ in range(max_rounds):
            processed = sum(worker.drain() for worker in self.workers.values())
            total += processed
            if processed == 0:
                break
        return total
