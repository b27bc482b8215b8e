"""
app/runtime.py

Wires settings, clients, stages and workers into one process-owned runtime.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

import requests
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.cache import TTLCache
from app.config import (
    get_audit_settings,
    get_autoscaler_settings,
    get_budget_settings,
    get_cache_settings,
    get_circuit_breaker_settings,
    get_crawler_settings,
    get_llm_settings,
    get_mail_settings,
    get_pipeline_settings,
    get_places_settings,
    get_scheduler_settings,
)
from app.connectors.circuit_breaker import CircuitBreaker
from app.connectors.places import PlacesClient
from app.crawling.crawler import WebCrawler
from app.feature_flags import FeatureFlags
from app.logging_utils import log_event
from app.notifications.dispatcher import NotificationDispatcher
from app.notifications.mailer import BaseMailer, SmtpMailer
from app.pipeline.autoscaler import AutoScaler
from app.pipeline.queue import InMemoryQueueBackend, JobQueue, QueueBackend, SqlAlchemyQueueBackend
from app.pipeline.stages import AuditStage, CrawlStage, EnrichStage, NotifyStage, StageHandlers
from app.pipeline.worker import JobRunner, WorkerPool
from app.scheduler.jobs import AuditScheduler, build_scheduler
from app.services.audit_trigger_service import AuditTriggerService
from app.services.failed_job_service import FailedJobService
from costs.ledger import CostLedger
from llm_audit.adapter import BaseLLMAdapter, MockLLMAdapter, OpenAILLMAdapter
from llm_audit.auditor import AIAuditor

logger = logging.getLogger(__name__)


def build_llm_adapter(circuit_breaker: CircuitBreaker | None = None) -> BaseLLMAdapter:
    settings = get_llm_settings()
    if settings.adapter == "mock":
        return MockLLMAdapter()
    if settings.adapter != "openai":
        raise RuntimeError(f"Unsupported LLM_ADAPTER '{settings.adapter}'. Use 'openai' or 'mock'.")
    return OpenAILLMAdapter(
        model=settings.model,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        api_key=settings.api_key,
        base_url=settings.base_url,
        max_call_retries=settings.max_call_retries,
        call_backoff_seconds=settings.call_backoff_seconds,
        circuit_breaker=circuit_breaker,
    )


def build_queue_backend(session_factory: Callable[[], Session]) -> QueueBackend:
    backend = get_pipeline_settings().queue_backend
    if backend == "memory":
        return InMemoryQueueBackend()
    if backend == "database":
        return SqlAlchemyQueueBackend(session_factory)
    raise RuntimeError(f"Unsupported PIPELINE_QUEUE_BACKEND '{backend}'. Use 'database' or 'memory'.")


@dataclass
class PipelineRuntime:
    session_factory: Callable[[], Session]
    job_queue: JobQueue
    cost_ledger: CostLedger
    workers: WorkerPool
    autoscaler: AutoScaler
    audit_scheduler: AuditScheduler
    trigger_service: AuditTriggerService
    failed_jobs: FailedJobService
    scheduler: BackgroundScheduler | None = None

    @classmethod
    def build(
        cls,
        session_factory: Callable[[], Session],
        *,
        queue_backend: QueueBackend | None = None,
        llm_adapter: BaseLLMAdapter | None = None,
        mailer: BaseMailer | None = None,
        http_session: requests.Session | None = None,
    ) -> "PipelineRuntime":
        pipeline_settings = get_pipeline_settings()
        breaker_settings = get_circuit_breaker_settings()
        cache_settings = get_cache_settings()
        mail_settings = get_mail_settings()
        audit_settings = get_audit_settings()

        cost_ledger = CostLedger(session_factory=session_factory)
        job_queue = JobQueue(
            backend=queue_backend or build_queue_backend(session_factory),
            settings=pipeline_settings,
        )

        places = PlacesClient(
            settings=get_places_settings(),
            cost_ledger=cost_ledger,
            session=http_session,
            circuit_breaker=CircuitBreaker(
                name="places",
                failure_threshold=breaker_settings.failure_threshold,
                reset_timeout_seconds=breaker_settings.reset_timeout_seconds,
            ),
        )
        adapter = llm_adapter or build_llm_adapter(
            CircuitBreaker(
                name="llm",
                failure_threshold=breaker_settings.failure_threshold,
                reset_timeout_seconds=breaker_settings.reset_timeout_seconds,
            )
        )
        auditor = AIAuditor(
            session_factory=session_factory,
            adapter=adapter,
            cost_ledger=cost_ledger,
            field_cache=TTLCache(ttl_seconds=cache_settings.ttl_seconds),
            pass_threshold=audit_settings.pass_threshold,
            max_format_retries=get_llm_settings().max_format_retries,
        )
        dispatcher = NotificationDispatcher(
            session_factory=session_factory,
            mailer=mailer or SmtpMailer(mail_settings),
            settings=mail_settings,
            cost_ledger=cost_ledger,
            backoff_base_seconds=pipeline_settings.backoff_base_seconds,
        )
        feature_flags = FeatureFlags(
            session_factory=session_factory,
            cache=TTLCache(ttl_seconds=cache_settings.ttl_seconds),
        )

        handlers = StageHandlers(
            crawl=CrawlStage(
                session_factory=session_factory,
                crawler_factory=partial(WebCrawler, settings=get_crawler_settings(), session=http_session),
                cost_ledger=cost_ledger,
            ),
            enrich=EnrichStage(session_factory=session_factory, places=places),
            audit=AuditStage(
                session_factory=session_factory,
                auditor=auditor,
                settings=audit_settings,
                feature_flags=feature_flags,
            ),
            notify=NotifyStage(
                session_factory=session_factory,
                dispatcher=dispatcher,
                settings=mail_settings,
            ),
        )
        runner = JobRunner(
            job_queue=job_queue,
            handlers=handlers,
            session_factory=session_factory,
            settings=pipeline_settings,
        )
        trigger_service = AuditTriggerService(session_factory=session_factory, job_queue=job_queue)

        return cls(
            session_factory=session_factory,
            job_queue=job_queue,
            cost_ledger=cost_ledger,
            workers=WorkerPool(job_queue=job_queue, runner=runner, settings=pipeline_settings),
            autoscaler=AutoScaler(
                job_queue=job_queue,
                settings=get_autoscaler_settings(),
                initial_workers=pipeline_settings.worker_concurrency,
            ),
            audit_scheduler=AuditScheduler(
                session_factory=session_factory,
                trigger_service=trigger_service,
                settings=get_scheduler_settings(),
                cost_ledger=cost_ledger,
                budget_settings=get_budget_settings(),
            ),
            trigger_service=trigger_service,
            failed_jobs=FailedJobService(session_factory=session_factory, job_queue=job_queue),
        )

    def start(self, *, workers: bool = True, scheduler: bool = True) -> None:
        if workers:
            self.workers.start()
        if scheduler and get_scheduler_settings().enabled:
            self.scheduler = build_scheduler(
                audit_scheduler=self.audit_scheduler,
                settings=get_scheduler_settings(),
                autoscaler=self.autoscaler,
                autoscaler_interval_seconds=get_autoscaler_settings().check_interval_seconds,
            )
            self.scheduler.start()
        log_event(logger, logging.INFO, "runtime_started", workers=workers, scheduler=self.scheduler is not None)

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=True)
            self.scheduler = None
        self.workers.stop(wait=True)
        log_event(logger, logging.INFO, "runtime_stopped")
