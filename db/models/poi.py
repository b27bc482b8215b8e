"""
db/models/poi.py

Point-of-interest model and its contact persons.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, JSONType, TimestampMixin


class POIAuditStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"


class TrustLevel:
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class POI(Base, TimestampMixin):
    """
    A tourism point of interest as held in the master database.

    The three snapshot columns hold the latest data seen per source:
    master_data (internal record), website_data (crawler) and maps_data
    (places lookup). Pipeline stages overwrite their own snapshot only.
    """

    __tablename__ = "pois"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    street: Mapped[str | None] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    region: Mapped[str | None] = mapped_column(String(120), nullable=True)
    category: Mapped[str | None] = mapped_column(String(120), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    master_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Internal master record snapshot",
    )
    website_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Latest data extracted from the POI website",
    )
    maps_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Latest data from the places lookup",
    )

    audit_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=POIAuditStatus.PENDING,
    )
    audit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_audit_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    contacts: Mapped[list["POIContact"]] = relationship(
        "POIContact",
        back_populates="poi",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_pois_region", "region"),
        Index("ix_pois_category", "category"),
        Index("ix_pois_audit_status", "audit_status"),
        Index("ix_pois_external_id", "external_id"),
    )

    def master_snapshot(self) -> dict[str, Any]:
        """Master record as a flat dict; explicit master_data keys win over columns."""
        snapshot: dict[str, Any] = {
            "name": self.name,
            "street": self.street,
            "postal_code": self.postal_code,
            "city": self.city,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
        if self.master_data:
            snapshot.update(self.master_data)
        return {key: value for key, value in snapshot.items() if value is not None}

    def __repr__(self) -> str:
        return f"<POI id={self.id} name={self.name!r} status={self.audit_status!r}>"


class POIContact(Base, TimestampMixin):
    __tablename__ = "poi_contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    poi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pois.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    trust_level: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TrustLevel.MEDIUM,
        comment="HIGH, MEDIUM, LOW",
    )

    poi: Mapped[POI] = relationship("POI", back_populates="contacts")

    __table_args__ = (Index("ix_poi_contacts_poi_id", "poi_id"),)
