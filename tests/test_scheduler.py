"""
tests/test_scheduler.py

Pytest unit tests for AuditScheduler and the scheduler factory.

Coverage
--------
- A schedule run enqueues one crawl job per matching POI
- Region / category / max_score filters; inactive and website-less POIs excluded
- Inactive schedules skipped unless forced; unknown names raise
- Budget gate skips runs when the projection exceeds the budget
- Run bookkeeping (last_run_at, last_status, next_run_at)
- sync registers active schedules, skips invalid cron, drops removed ones
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from app.config import AutoScalerSettings, BudgetSettings, PipelineSettings, SchedulerSettings
from app.domain.pipeline import QueueName
from app.pipeline.autoscaler import AutoScaler
from app.pipeline.queue import InMemoryQueueBackend, JobQueue
from app.scheduler.jobs import SCHEDULE_JOB_PREFIX, AuditScheduler, UnknownScheduleError, build_scheduler
from app.services.audit_trigger_service import AuditTriggerService
from costs.ledger import CostLedger
from db.models.cost_entry import CostEntry, CostService
from db.models.schedule_config import ScheduleConfig, ScheduleRunStatus
from db.repositories.schedule_repository import ScheduleRepository

SETTINGS = SchedulerSettings(timezone="UTC", max_pois_per_run=100)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def job_queue(clock) -> JobQueue:
    return JobQueue(backend=InMemoryQueueBackend(), settings=PipelineSettings(), clock=clock)


@pytest.fixture()
def make_schedule(session_factory):
    def _make(name: str, cron: str = "0 3 * * *", *, active: bool = True, filters: dict | None = None) -> None:
        with session_factory() as db, db.begin():
            db.add(ScheduleConfig(name=name, cron_expression=cron, is_active=active, filters=filters))

    return _make


def _scheduler(session_factory, job_queue, clock, settings=SETTINGS, **kwargs) -> AuditScheduler:
    return AuditScheduler(
        session_factory=session_factory,
        trigger_service=AuditTriggerService(session_factory=session_factory, job_queue=job_queue),
        settings=settings,
        clock=clock,
        **kwargs,
    )


def _schedule(session_factory, name: str) -> ScheduleConfig:
    with session_factory() as db:
        return ScheduleRepository(db).get_by_name(name)


# ---------------------------------------------------------------------------
# Running schedules
# ---------------------------------------------------------------------------


class TestRunSchedule:
    def test_enqueues_matching_pois(self, session_factory, job_queue, clock, make_poi, make_schedule) -> None:
        make_poi(name="Linde", region="schwarzwald", category="restaurant")
        make_poi(name="Adler", region="schwarzwald", category="hotel")
        make_poi(name="Krone", region="bodensee", category="restaurant")
        make_schedule("nightly-schwarzwald", filters={"region": "schwarzwald"})

        result = _scheduler(session_factory, job_queue, clock).run_schedule("nightly-schwarzwald")

        assert result.status == ScheduleRunStatus.SUCCESS
        assert (result.matched, result.enqueued, result.deduplicated) == (2, 2, 0)
        job = job_queue.reserve(QueueName.CRAWL)
        assert job.payload["schedule_name"] == "nightly-schwarzwald"
        assert job.triggered_by == f"{SCHEDULE_JOB_PREFIX}nightly-schwarzwald"

    def test_filters_exclude_unsuitable_pois(self, session_factory, job_queue, clock, make_poi, make_schedule) -> None:
        make_poi(name="Never audited", category="restaurant")
        make_poi(name="Poor score", category="restaurant", audit_score=40)
        make_poi(name="Good score", category="restaurant", audit_score=95)
        make_poi(name="No website", category="restaurant", website=None)
        make_poi(name="Inactive", category="restaurant", is_active=False)
        make_poi(name="Hotel", category="hotel")
        make_schedule("weak-restaurants", filters={"category": "restaurant", "max_score": 80})

        result = _scheduler(session_factory, job_queue, clock).run_schedule("weak-restaurants")

        assert result.matched == 2

    def test_second_run_is_deduplicated(self, session_factory, job_queue, clock, make_poi, make_schedule) -> None:
        make_poi()
        make_schedule("nightly")
        scheduler = _scheduler(session_factory, job_queue, clock)
        scheduler.run_schedule("nightly")

        again = scheduler.run_schedule("nightly")

        assert (again.enqueued, again.deduplicated) == (0, 1)
        assert job_queue.counts(QueueName.CRAWL).waiting == 1

    def test_records_run(self, session_factory, job_queue, clock, make_poi, make_schedule) -> None:
        make_poi()
        make_schedule("nightly", "0 3 * * *")

        _scheduler(session_factory, job_queue, clock).run_schedule("nightly")

        schedule = _schedule(session_factory, "nightly")
        assert schedule.last_status == ScheduleRunStatus.SUCCESS
        assert schedule.last_run_at.replace(tzinfo=None) == datetime(2026, 3, 10, 12, 0)
        assert schedule.next_run_at.replace(tzinfo=None) == datetime(2026, 3, 11, 3, 0)

    def test_inactive_schedule_skipped_unless_forced(
        self, session_factory, job_queue, clock, make_poi, make_schedule
    ) -> None:
        make_poi()
        make_schedule("paused", active=False)
        scheduler = _scheduler(session_factory, job_queue, clock)

        skipped = scheduler.run_schedule("paused")
        forced = scheduler.run_schedule("paused", force=True, triggered_by="user:42")

        assert skipped.status == ScheduleRunStatus.SKIPPED
        assert skipped.reason == "inactive"
        assert forced.status == ScheduleRunStatus.SUCCESS
        assert job_queue.reserve(QueueName.CRAWL).triggered_by == "user:42"

    def test_unknown_schedule(self, session_factory, job_queue, clock) -> None:
        with pytest.raises(UnknownScheduleError):
            _scheduler(session_factory, job_queue, clock).run_schedule("missing")

    def test_over_budget_skips_run(self, session_factory, job_queue, clock, make_poi, make_schedule) -> None:
        make_poi()
        make_schedule("nightly")
        at = datetime(2026, 3, 5, tzinfo=timezone.utc)
        with session_factory() as db, db.begin():
            db.add(
                CostEntry(
                    service=CostService.LLM,
                    operation="seed",
                    units=Decimal("1"),
                    unit_cost=Decimal("600"),
                    total_cost=Decimal("600"),
                    created_at=at,
                    updated_at=at,
                )
            )
        scheduler = _scheduler(
            session_factory,
            job_queue,
            clock,
            settings=SchedulerSettings(timezone="UTC", skip_when_over_budget=True),
            cost_ledger=CostLedger(session_factory=session_factory, clock=clock),
            budget_settings=BudgetSettings(monthly_budget=500.0),
        )

        result = scheduler.run_schedule("nightly")

        assert result.status == ScheduleRunStatus.SKIPPED
        assert result.reason == "over_budget"
        assert job_queue.counts(QueueName.CRAWL).waiting == 0
        assert _schedule(session_factory, "nightly").last_status == ScheduleRunStatus.SKIPPED


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestSync:
    def test_registers_active_and_skips_invalid(self, session_factory, job_queue, clock, make_schedule) -> None:
        make_schedule("nightly", "0 3 * * *")
        make_schedule("broken", "every night")
        make_schedule("paused", active=False)
        background = BackgroundScheduler(timezone="UTC")

        registered = _scheduler(session_factory, job_queue, clock).sync(background)

        assert registered == ["nightly"]
        assert [job.id for job in background.get_jobs()] == [f"{SCHEDULE_JOB_PREFIX}nightly"]

    def test_removed_schedule_is_unregistered(self, session_factory, job_queue, clock, make_schedule) -> None:
        make_schedule("nightly")
        make_schedule("weekly", "0 4 * * 1")
        background = BackgroundScheduler(timezone="UTC")
        scheduler = _scheduler(session_factory, job_queue, clock)
        scheduler.sync(background)

        with session_factory() as db, db.begin():
            ScheduleRepository(db).get_by_name("weekly").is_active = False
        scheduler.sync(background)

        assert {job.id for job in background.get_jobs()} == {f"{SCHEDULE_JOB_PREFIX}nightly"}

    def test_build_scheduler_adds_fixed_jobs(self, session_factory, job_queue, clock, make_schedule) -> None:
        make_schedule("nightly")
        autoscaler = AutoScaler(job_queue=job_queue, settings=AutoScalerSettings())

        background = build_scheduler(
            audit_scheduler=_scheduler(session_factory, job_queue, clock),
            settings=SETTINGS,
            autoscaler=autoscaler,
        )

        assert {job.id for job in background.get_jobs()} == {
            f"{SCHEDULE_JOB_PREFIX}nightly",
            "schedule_reload",
            "autoscaler_check",
        }
        assert background.running is False
