"""
db/models/audit.py

Audit run snapshots, per-field comparison values and the comparable field catalogue.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class AuditRecordStatus:
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MatchStatus:
    MATCH = "match"
    PARTIAL_MATCH = "partial_match"
    MISMATCH = "mismatch"
    MISSING_DATA = "missing_data"


class DataField(Base, TimestampMixin):
    """
    One comparable field in the audit catalogue (name, phone, opening hours, ...).
    """

    __tablename__ = "data_fields"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(32), nullable=False, default="string")
    is_core: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ExtractedValue(Base, TimestampMixin):
    """
    Latest comparison result for one field of one POI.

    Upserted on every audit; the unique (poi_id, field_name) pair is the
    natural key.
    """

    __tablename__ = "extracted_values"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    poi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pois.id", ondelete="CASCADE"),
        nullable=False,
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    master_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    maps_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    normalized_master: Mapped[str | None] = mapped_column(Text, nullable=True)
    normalized_website: Mapped[str | None] = mapped_column(Text, nullable=True)
    normalized_maps: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_status: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discrepancy: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("poi_id", "field_name", name="uq_extracted_values_poi_field"),
        Index("ix_extracted_values_poi_id", "poi_id"),
    )


class AuditRecord(Base, TimestampMixin):
    """
    Immutable snapshot of one audit run, successful or failed.
    """

    __tablename__ = "audit_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    poi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pois.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    overall_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    field_scores: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="field name -> score (0-100)",
    )
    discrepancies: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendations: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processing_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_audit_records_poi_id", "poi_id"),
        Index("ix_audit_records_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditRecord id={self.id} poi={self.poi_id} score={self.overall_score}>"
