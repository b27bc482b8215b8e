"""
Repository for cost ledger inserts and aggregates.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.cost_entry import CostEntry


class CostRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(
        self,
        *,
        service: str,
        operation: str,
        units: Decimal,
        unit_cost: Decimal,
        poi_id: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> CostEntry:
        entry = CostEntry(
            service=service,
            operation=operation,
            units=units,
            unit_cost=unit_cost,
            total_cost=units * unit_cost,
            poi_id=poi_id,
            details=details,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def list_between(self, start: datetime, end: datetime) -> list[CostEntry]:
        stmt = (
            select(CostEntry)
            .where(CostEntry.created_at >= start, CostEntry.created_at < end)
            .order_by(CostEntry.created_at)
        )
        return list(self._session.scalars(stmt).all())
