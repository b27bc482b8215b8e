"""
Repository for POI lookups and pipeline-driven POI updates.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.models.poi import POI, POIContact, TrustLevel


class POIRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, poi_id: uuid.UUID) -> POI | None:
        return self._session.get(POI, poi_id)

    def get_many(self, poi_ids: Sequence[uuid.UUID]) -> list[POI]:
        if not poi_ids:
            return []
        stmt = select(POI).where(POI.id.in_(list(poi_ids)))
        return list(self._session.scalars(stmt).all())

    def list_auditable(
        self,
        *,
        region: str | None = None,
        category: str | None = None,
        max_score: int | None = None,
        limit: int = 1000,
    ) -> list[POI]:
        """
        Return active, non-deleted POIs that have a website and match the filters.

        ``max_score`` keeps POIs whose last score is strictly below the ceiling;
        POIs that were never audited are always included.
        """

        stmt: Select[tuple[POI]] = select(POI).where(
            POI.is_active.is_(True),
            POI.deleted_at.is_(None),
            POI.website.is_not(None),
            POI.website != "",
        )
        if region:
            stmt = stmt.where(POI.region == region)
        if category:
            stmt = stmt.where(POI.category == category)
        if max_score is not None:
            stmt = stmt.where((POI.audit_score.is_(None)) | (POI.audit_score < max_score))

        stmt = stmt.order_by(POI.last_audit_at.asc().nulls_first(), POI.name).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def set_status(
        self,
        poi: POI,
        status: str,
        *,
        error: str | None = None,
    ) -> POI:
        poi.audit_status = status
        poi.last_error = error
        return poi

    def store_website_data(self, poi: POI, website_data: dict[str, Any]) -> POI:
        poi.website_data = website_data
        return poi

    def store_maps_data(self, poi: POI, maps_data: dict[str, Any]) -> POI:
        poi.maps_data = maps_data
        return poi

    def record_audit_result(self, poi: POI, *, score: int, status: str) -> POI:
        poi.audit_score = score
        poi.audit_status = status
        poi.last_audit_at = datetime.now(timezone.utc)
        poi.last_error = None
        return poi

    def high_trust_email(self, poi_id: uuid.UUID) -> str | None:
        stmt = (
            select(POIContact.email)
            .where(
                POIContact.poi_id == poi_id,
                POIContact.trust_level == TrustLevel.HIGH,
                POIContact.email.is_not(None),
            )
            .order_by(POIContact.created_at)
            .limit(1)
        )
        return self._session.scalars(stmt).first()
