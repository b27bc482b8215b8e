"""
app/scheduler/jobs.py

APScheduler-based cron scheduler that seeds the audit pipeline.

Schedule discovery
------------------
Rules live in the ``schedule_configs`` table: a name, a crontab expression
and an optional POI filter (``region``, ``category``, ``max_score``). Active
rules are registered as cron jobs on start-up and re-synced periodically so
that edits in the table take effect without a restart. Rules with an invalid
cron expression are logged and skipped.

Fixed jobs
----------
  schedule_reload: every ``SCHEDULER_RELOAD_SECONDS`` (default 300s)
  autoscaler_check: every ``AUTOSCALER_CHECK_INTERVAL_SECONDS`` (default 30s)

Lifecycle
---------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app or worker boot; shut it down gracefully on exit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from app.config import BudgetSettings, SchedulerSettings
from app.logging_utils import log_event
from app.pipeline.autoscaler import AutoScaler
from app.services.audit_trigger_service import AuditTriggerService, POIFilter
from costs.ledger import CostLedger
from db.models.schedule_config import ScheduleRunStatus
from db.repositories.schedule_repository import ScheduleRepository

logger = logging.getLogger(__name__)

SCHEDULE_JOB_PREFIX = "schedule:"


class UnknownScheduleError(LookupError):
    pass


@dataclass(frozen=True)
class ScheduleRunResult:
    name: str
    status: str
    enqueued: int = 0
    deduplicated: int = 0
    matched: int = 0
    reason: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Schedule runner
# ---------------------------------------------------------------------------


class AuditScheduler:
    """
    Resolves a schedule's POI set and enqueues crawl jobs for it.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        trigger_service: AuditTriggerService,
        settings: SchedulerSettings,
        cost_ledger: CostLedger | None = None,
        budget_settings: BudgetSettings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._trigger_service = trigger_service
        self._settings = settings
        self._cost_ledger = cost_ledger
        self._budget_settings = budget_settings
        self._clock = clock

    def cron_trigger(self, expression: str) -> CronTrigger:
        """
        Raises:
            ValueError: for an invalid crontab expression.
        """
        return CronTrigger.from_crontab(expression, timezone=self._settings.timezone)

    def run_schedule(self, name: str, *, force: bool = False, triggered_by: str | None = None) -> ScheduleRunResult:
        """
        Run schedule ``name`` now.

        Inactive schedules are skipped unless ``force`` is set (manual trigger).

        Raises:
            UnknownScheduleError: if no schedule has that name.
        """

        now = self._clock()
        with self._session_factory() as db:
            schedule = ScheduleRepository(db).get_by_name(name)
            if schedule is None:
                raise UnknownScheduleError(name)
            is_active = schedule.is_active
            cron_expression = schedule.cron_expression
            poi_filter = POIFilter.from_mapping(schedule.filters)

        if not is_active and not force:
            log_event(logger, logging.INFO, "schedule_skipped_inactive", schedule=name)
            return ScheduleRunResult(name=name, status=ScheduleRunStatus.SKIPPED, reason="inactive")

        if self._over_budget(now):
            self._record(name, now, cron_expression, ScheduleRunStatus.SKIPPED)
            return ScheduleRunResult(name=name, status=ScheduleRunStatus.SKIPPED, reason="over_budget")

        try:
            result = self._trigger_service.start_for_filter(
                poi_filter,
                limit=self._settings.max_pois_per_run,
                triggered_by=triggered_by or f"{SCHEDULE_JOB_PREFIX}{name}",
                schedule_name=name,
            )
        except Exception:
            logger.exception("Scheduler: schedule %r failed", name)
            self._record(name, now, cron_expression, ScheduleRunStatus.FAILED)
            raise

        self._record(name, now, cron_expression, ScheduleRunStatus.SUCCESS)
        log_event(
            logger,
            logging.INFO,
            "schedule_completed",
            schedule=name,
            matched=result.requested,
            enqueued=result.enqueued,
            deduplicated=result.deduplicated,
        )
        return ScheduleRunResult(
            name=name,
            status=ScheduleRunStatus.SUCCESS,
            enqueued=result.enqueued,
            deduplicated=result.deduplicated,
            matched=result.requested,
        )

    def sync(self, scheduler: BackgroundScheduler) -> list[str]:
        """
        Register one cron job per active schedule and drop jobs for
        schedules that were removed or deactivated. Returns the registered names.
        """

        with self._session_factory() as db:
            schedules = [(item.name, item.cron_expression) for item in ScheduleRepository(db).list_active()]

        registered: list[str] = []
        for name, expression in schedules:
            try:
                trigger = self.cron_trigger(expression)
            except ValueError as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "schedule_invalid_cron",
                    schedule=name,
                    cron_expression=expression,
                    error=str(exc),
                )
                continue
            scheduler.add_job(
                self._run_scheduled,
                trigger=trigger,
                args=[name],
                id=f"{SCHEDULE_JOB_PREFIX}{name}",
                name=f"Audit schedule {name}",
                replace_existing=True,
                misfire_grace_time=3600,
                coalesce=True,
                max_instances=1,
            )
            registered.append(name)

        wanted = {f"{SCHEDULE_JOB_PREFIX}{name}" for name in registered}
        for job in scheduler.get_jobs():
            if job.id.startswith(SCHEDULE_JOB_PREFIX) and job.id not in wanted:
                scheduler.remove_job(job.id)
                log_event(logger, logging.INFO, "schedule_unregistered", job_id=job.id)

        log_event(logger, logging.INFO, "schedules_synced", schedules=registered)
        return registered

    def _run_scheduled(self, name: str) -> None:
        try:
            self.run_schedule(name)
        except UnknownScheduleError:
            log_event(logger, logging.WARNING, "schedule_missing", schedule=name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Scheduler: schedule %r failed: %s", name, exc)

    def _over_budget(self, now: datetime) -> bool:
        if not self._settings.skip_when_over_budget:
            return False
        if self._cost_ledger is None or self._budget_settings is None:
            return False
        status = self._cost_ledger.budget_status(self._budget_settings.monthly_budget, now)
        return status.is_exceeded

    def _record(self, name: str, ran_at: datetime, cron_expression: str, status: str) -> None:
        try:
            next_run_at = self.cron_trigger(cron_expression).get_next_fire_time(None, ran_at)
        except ValueError:
            next_run_at = None
        with self._session_factory() as db, db.begin():
            repo = ScheduleRepository(db)
            schedule = repo.get_by_name(name)
            if schedule is not None:
                repo.record_run(schedule, ran_at=ran_at, status=status, next_run_at=next_run_at)


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler(
    *,
    audit_scheduler: AuditScheduler,
    settings: SchedulerSettings,
    autoscaler: AutoScaler | None = None,
    autoscaler_interval_seconds: int = 30,
) -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """

    scheduler = BackgroundScheduler(timezone=settings.timezone)

    audit_scheduler.sync(scheduler)
    scheduler.add_job(
        audit_scheduler.sync,
        trigger="interval",
        seconds=max(30, settings.reload_interval_seconds),
        args=[scheduler],
        id="schedule_reload",
        name="Reload audit schedules",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if autoscaler is not None:
        scheduler.add_job(
            autoscaler.check,
            trigger="interval",
            seconds=max(1, autoscaler_interval_seconds),
            id="autoscaler_check",
            name="Auto-scaler check",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    logger.info(
        "Scheduler configured: %d job(s) registered: %s",
        len(scheduler.get_jobs()),
        ", ".join(job.id for job in scheduler.get_jobs()),
    )
    return scheduler
