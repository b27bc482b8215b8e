"""
Repository for audit schedule configuration and run bookkeeping.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.schedule_config import ScheduleConfig


class ScheduleRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_active(self) -> list[ScheduleConfig]:
        stmt = (
            select(ScheduleConfig)
            .where(ScheduleConfig.is_active.is_(True))
            .order_by(ScheduleConfig.name)
        )
        return list(self._session.scalars(stmt).all())

    def get_by_name(self, name: str) -> ScheduleConfig | None:
        stmt = select(ScheduleConfig).where(ScheduleConfig.name == name)
        return self._session.scalars(stmt).first()

    def record_run(
        self,
        schedule: ScheduleConfig,
        *,
        ran_at: datetime,
        status: str,
        next_run_at: datetime | None,
    ) -> ScheduleConfig:
        schedule.last_run_at = ran_at
        schedule.last_status = status
        schedule.next_run_at = next_run_at
        return schedule
