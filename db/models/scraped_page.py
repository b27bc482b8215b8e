"""
db/models/scraped_page.py

Pages fetched by the website crawler.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class ScrapedPage(Base, TimestampMixin):
    __tablename__ = "scraped_pages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    poi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pois.id", ondelete="CASCADE"),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Bounded copy of the response body",
    )
    json_ld: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (Index("ix_scraped_pages_poi_id", "poi_id"),)
