"""
db/models/cost_entry.py

Append-only ledger of priced external calls.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class CostService:
    LLM = "llm"
    GEOCODE = "geocode"
    CRAWL = "crawl"
    MAIL = "mail"


class CostEntry(Base, TimestampMixin):
    __tablename__ = "cost_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="llm, geocode, crawl, mail",
    )
    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    units: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(18, 10), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(18, 10), nullable=False)
    poi_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        Index("ix_cost_entries_created_at", "created_at"),
        Index("ix_cost_entries_service", "service"),
        Index("ix_cost_entries_poi_id", "poi_id"),
    )
