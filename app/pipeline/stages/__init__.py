"""
Stage handlers for the crawl, enrich, audit and notify queues.
"""

from __future__ import annotations

from dataclasses import dataclass

from typing_extensions import assert_never

from app.domain.pipeline import QueueName
from app.pipeline.stages.audit import AuditStage
from app.pipeline.stages.base import FollowUp, StageHandler, StageOutput
from app.pipeline.stages.crawl import CrawlStage
from app.pipeline.stages.enrich import EnrichStage
from app.pipeline.stages.notify import NotifyStage


@dataclass(frozen=True)
class StageHandlers:
    crawl: StageHandler
    enrich: StageHandler
    audit: StageHandler
    notify: StageHandler

    def handler_for(self, queue: QueueName) -> StageHandler:
        if queue is QueueName.CRAWL:
            return self.crawl
        if queue is QueueName.ENRICH:
            return self.enrich
        if queue is QueueName.AUDIT:
            return self.audit
        if queue is QueueName.NOTIFY:
            return self.notify
        assert_never(queue)


__all__ = [
    "AuditStage",
    "CrawlStage",
    "EnrichStage",
    "FollowUp",
    "NotifyStage",
    "StageHandler",
    "StageHandlers",
    "StageOutput",
]
