"""
Crawl stage: fetch the POI website and store the extracted website snapshot.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.crawling.crawler import CrawlResult, WebCrawler
from app.domain.pipeline import CrawlJobPayload, EnrichJobPayload, QueueName
from app.logging_utils import log_event
from app.pipeline.queue import QueuedJob
from app.pipeline.results import CallResult
from app.pipeline.stages.base import FollowUp, StageHandler, StageOutput
from costs.ledger import CostLedger
from db.models.cost_entry import CostService
from db.models.poi import POIAuditStatus
from db.repositories.poi_repository import POIRepository
from db.repositories.scraped_page_repository import ScrapedPageRepository

logger = logging.getLogger(__name__)

CrawlerFactory = Callable[..., WebCrawler]


class CrawlStage(StageHandler):
    queue = QueueName.CRAWL

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        crawler_factory: CrawlerFactory,
        cost_ledger: CostLedger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._crawler_factory = crawler_factory
        self._cost_ledger = cost_ledger

    def run(self, job: QueuedJob, payload: CrawlJobPayload) -> CallResult[StageOutput]:
        poi_id = payload.poi_id
        with self._session_factory() as db, db.begin():
            pois = POIRepository(db)
            poi = pois.get(poi_id)
            if poi is None:
                return CallResult.terminal("poi_not_found", detail=str(poi_id))
            pois.set_status(poi, POIAuditStatus.IN_PROGRESS)
            start_url = payload.url or poi.website

        follow_up = FollowUp(QueueName.ENRICH, EnrichJobPayload(poi_id=poi_id))
        if not start_url:
            log_event(logger, logging.WARNING, "crawl_no_website", poi_id=poi_id, job_id=job.id)
            self._store(poi_id, None)
            return CallResult.success(StageOutput(follow_ups=[follow_up], summary={"pages": 0}))

        crawler = self._crawler_factory(on_request=lambda url, status: self._bill(poi_id, url, status))
        result = crawler.crawl(start_url, max_depth=payload.max_depth)

        if result.total_failure:
            first = result.errors[0]
            return CallResult.transient("crawl_failed", detail=f"{first.url}: {first.error}")

        self._store(poi_id, result)
        return CallResult.success(
            StageOutput(
                follow_ups=[follow_up],
                summary={
                    "pages": len(result.fetched),
                    "skipped_robots": len(result.skipped),
                    "errors": len(result.errors),
                    "invalid_start_url": result.invalid_start_url,
                },
            )
        )

    def _store(self, poi_id: uuid.UUID, result: CrawlResult | None) -> None:
        website_data = result.website_data() if result is not None else {}
        pages = [
            {
                "url": page.url,
                "depth": page.depth,
                "status_code": page.status_code,
                "content_type": page.content_type,
                "body": page.body,
                "json_ld": page.json_ld or None,
            }
            for page in (result.fetched if result is not None else [])
        ]
        with self._session_factory() as db, db.begin():
            pois = POIRepository(db)
            poi = pois.get(poi_id)
            if poi is None:
                return
            pois.store_website_data(poi, website_data)
            ScrapedPageRepository(db).replace_for_poi(poi_id, pages)

    def _bill(self, poi_id: uuid.UUID, url: str, status_code: int | None) -> None:
        if self._cost_ledger is None:
            return
        self._cost_ledger.record(
            service=CostService.CRAWL,
            operation="page_load",
            poi_id=poi_id,
            details={"url": url, "status_code": status_code},
        )
