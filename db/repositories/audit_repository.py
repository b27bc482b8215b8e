"""
Repository for audit records, extracted values and the data-field catalogue.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.audit import AuditRecord, AuditRecordStatus, DataField, ExtractedValue


class AuditRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_data_fields(self) -> list[DataField]:
        stmt = select(DataField).order_by(DataField.display_order, DataField.name)
        return list(self._session.scalars(stmt).all())

    def upsert_extracted_value(
        self,
        *,
        poi_id: uuid.UUID,
        field_name: str,
        values: dict[str, Any],
    ) -> ExtractedValue:
        """
        Insert or update the single ExtractedValue row for (poi_id, field_name).
        """

        stmt = select(ExtractedValue).where(
            ExtractedValue.poi_id == poi_id,
            ExtractedValue.field_name == field_name,
        )
        row = self._session.scalars(stmt).first()
        if row is None:
            row = ExtractedValue(poi_id=poi_id, field_name=field_name)
            self._session.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        self._session.flush()
        return row

    def list_extracted_values(self, poi_id: uuid.UUID) -> list[ExtractedValue]:
        stmt = (
            select(ExtractedValue)
            .where(ExtractedValue.poi_id == poi_id)
            .order_by(ExtractedValue.field_name)
        )
        return list(self._session.scalars(stmt).all())

    def create_record(self, **fields: Any) -> AuditRecord:
        record = AuditRecord(**fields)
        self._session.add(record)
        self._session.flush()
        return record

    def create_failed_record(
        self,
        *,
        poi_id: uuid.UUID,
        error_message: str,
        job_id: str | None = None,
        processing_ms: int | None = None,
    ) -> AuditRecord:
        return self.create_record(
            poi_id=poi_id,
            status=AuditRecordStatus.FAILED,
            overall_score=0,
            error_message=error_message,
            job_id=job_id,
            processing_ms=processing_ms,
        )

    def get_record(self, record_id: uuid.UUID) -> AuditRecord | None:
        return self._session.get(AuditRecord, record_id)

    def list_records(self, poi_id: uuid.UUID, *, limit: int = 20) -> list[AuditRecord]:
        stmt = (
            select(AuditRecord)
            .where(AuditRecord.poi_id == poi_id)
            .order_by(AuditRecord.created_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())
