"""
Repository for crawled page copies.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models.scraped_page import ScrapedPage


class ScrapedPageRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def replace_for_poi(self, poi_id: uuid.UUID, pages: list[dict[str, Any]]) -> int:
        """Drop the previous crawl's pages for ``poi_id`` and insert ``pages``."""
        self._session.execute(delete(ScrapedPage).where(ScrapedPage.poi_id == poi_id))
        for page in pages:
            self._session.add(ScrapedPage(poi_id=poi_id, **page))
        self._session.flush()
        return len(pages)

    def list_for_poi(self, poi_id: uuid.UUID) -> list[ScrapedPage]:
        stmt = select(ScrapedPage).where(ScrapedPage.poi_id == poi_id).order_by(ScrapedPage.depth)
        return list(self._session.scalars(stmt).all())
