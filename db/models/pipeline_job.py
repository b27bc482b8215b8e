"""
db/models/pipeline_job.py

Durable queue row backing the job pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin, utc_now


class PipelineJobStatus:
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    IN_FLIGHT = (WAITING, DELAYED, ACTIVE)


class PipelineJob(Base, TimestampMixin):
    __tablename__ = "pipeline_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    queue: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="crawl, enrich, audit, notify",
    )
    job_key: Mapped[str] = mapped_column(String(200), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PipelineJobStatus.WAITING,
    )
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="set while active; an expired lease returns the job to delayed",
    )

    __table_args__ = (
        Index("ix_pipeline_jobs_queue_status", "queue", "status"),
        Index(
            "uq_pipeline_jobs_in_flight_key",
            "job_key",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'delayed', 'active')"),
            sqlite_where=text("status IN ('waiting', 'delayed', 'active')"),
        ),
        Index("ix_pipeline_jobs_available_at", "available_at"),
        Index("ix_pipeline_jobs_status_lease", "status", "lease_expires_at"),
    )
