"""
costs/ledger.py

Append-only cost recording plus summaries, month-end projection and budget alerts.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import metrics
from app.logging_utils import log_event
from costs.pricing import PriceBook, UnknownPriceError, default_price_book
from db.models.cost_entry import CostEntry, CostService
from db.repositories.cost_repository import CostRepository

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CostSummary:
    start: datetime
    end: datetime
    total: Decimal
    entry_count: int
    by_service: dict[str, Decimal] = field(default_factory=dict)
    by_day: dict[date, Decimal] = field(default_factory=dict)
    top_pois: list[tuple[uuid.UUID, Decimal]] = field(default_factory=list)


@dataclass(frozen=True)
class CostProjection:
    current_spend: Decimal
    daily_average: Decimal
    days_elapsed: int
    days_remaining: int
    projected_spend: Decimal


@dataclass(frozen=True)
class BudgetStatus:
    monthly_budget: Decimal
    current_spend: Decimal
    projected_spend: Decimal
    percent_used: Decimal
    is_exceeded: bool


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """First instant of ``now``'s month and of the following month."""
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    return start, start + timedelta(days=days_in_month)


class CostLedger:
    """
    Records one CostEntry per priced external call.

    Recording runs in its own session and never raises: a pricing or
    database problem is logged and the caller carries on.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        price_book: PriceBook | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._price_book = price_book or default_price_book()
        self._clock = clock

    def record(
        self,
        *,
        service: str,
        operation: str,
        units: int | Decimal = 1,
        poi_id: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> CostEntry | None:
        try:
            unit_cost = self._price_book.unit_cost(service, operation)
            with self._session_factory() as db:
                entry = CostRepository(db).add(
                    service=service,
                    operation=operation,
                    units=Decimal(units),
                    unit_cost=unit_cost,
                    poi_id=poi_id,
                    details=details,
                )
                db.commit()
        except (UnknownPriceError, SQLAlchemyError) as exc:
            log_event(
                logger,
                logging.ERROR,
                "cost_record_failed",
                service=service,
                operation=operation,
                units=units,
                poi_id=poi_id,
                error=str(exc),
            )
            return None

        metrics.API_COST_TOTAL.labels(service=service).inc(float(entry.total_cost))
        return entry

    def record_llm_usage(
        self,
        *,
        model: str,
        input_tokens: int,
        output_tokens: int,
        poi_id: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> list[CostEntry]:
        """
        Bill one completion as separate input-token and output-token entries.
        """

        input_operation, output_operation = self._price_book.llm_operations(model)
        entries: list[CostEntry] = []
        for operation, tokens, direction in (
            (input_operation, input_tokens, "input"),
            (output_operation, output_tokens, "output"),
        ):
            metrics.LLM_TOKENS_TOTAL.labels(model=model, direction=direction).inc(max(0, tokens))
            if tokens <= 0:
                continue
            entry = self.record(
                service=CostService.LLM,
                operation=operation,
                units=tokens,
                poi_id=poi_id,
                details={"model": model, **(details or {})},
            )
            if entry is not None:
                entries.append(entry)
        return entries

    def summary(self, start: datetime, end: datetime, *, top_n: int = 10) -> CostSummary:
        with self._session_factory() as db:
            entries = CostRepository(db).list_between(start, end)

        total = _ZERO
        by_service: dict[str, Decimal] = defaultdict(lambda: _ZERO)
        by_day: dict[date, Decimal] = defaultdict(lambda: _ZERO)
        by_poi: dict[uuid.UUID, Decimal] = defaultdict(lambda: _ZERO)
        for entry in entries:
            cost = Decimal(entry.total_cost)
            total += cost
            by_service[entry.service] += cost
            by_day[entry.created_at.date()] += cost
            if entry.poi_id is not None:
                by_poi[entry.poi_id] += cost

        top_pois = sorted(by_poi.items(), key=lambda item: item[1], reverse=True)[:top_n]
        return CostSummary(
            start=start,
            end=end,
            total=total,
            entry_count=len(entries),
            by_service=dict(by_service),
            by_day=dict(sorted(by_day.items())),
            top_pois=top_pois,
        )

    def projection(self, now: datetime | None = None) -> CostProjection:
        """
        Extrapolate month-end spend from the current month's daily average.

        Today counts as an elapsed day, so ``days_elapsed`` is the day of month.
        """

        now = now or self._clock()
        start, end = month_bounds(now)
        current = self.summary(start, end).total

        days_in_month = (end - start).days
        days_elapsed = now.day
        days_remaining = days_in_month - days_elapsed
        daily_average = current / Decimal(days_elapsed)
        return CostProjection(
            current_spend=current,
            daily_average=daily_average,
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            projected_spend=current + daily_average * Decimal(days_remaining),
        )

    def budget_status(
        self,
        monthly_budget: float | Decimal,
        now: datetime | None = None,
    ) -> BudgetStatus:
        """
        Compare the projected month-end spend against ``monthly_budget``.

        Advisory only; callers decide whether to hold back work.
        """

        ceiling = Decimal(str(monthly_budget))
        projection = self.projection(now)
        percent_used = (
            projection.current_spend / ceiling * _HUNDRED if ceiling > 0 else _ZERO
        )
        status = BudgetStatus(
            monthly_budget=ceiling,
            current_spend=projection.current_spend,
            projected_spend=projection.projected_spend,
            percent_used=percent_used,
            is_exceeded=projection.projected_spend > ceiling,
        )
        if status.is_exceeded:
            log_event(
                logger,
                logging.WARNING,
                "budget_projection_exceeded",
                monthly_budget=ceiling,
                current_spend=status.current_spend,
                projected_spend=status.projected_spend,
                percent_used=round(percent_used, 2),
            )
        return status
