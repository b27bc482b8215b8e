"""
Enqueue audits from CLI, by POI id or by filter.
"""

from __future__ import annotations

import argparse
import json
import uuid

from app.logging_utils import configure_logging
from app.config import get_pipeline_settings
from app.pipeline.queue import JobQueue
from app.runtime import build_queue_backend
from app.services.audit_trigger_service import AuditTriggerService, POIFilter
from db.session import SessionLocal


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the audit pipeline with crawl jobs.")
    parser.add_argument("poi_ids", nargs="*", type=uuid.UUID, help="POI ids to audit.")
    parser.add_argument("--region", default=None, help="Only POIs in this region.")
    parser.add_argument("--category", default=None, help="Only POIs in this category.")
    parser.add_argument("--max-score", type=int, default=None, help="Only POIs scoring below this.")
    parser.add_argument("--limit", type=int, default=1000, help="Maximum POIs for a filter run.")
    parser.add_argument("--priority", type=int, default=None, help="1 (urgent) to 10.")
    parser.add_argument("--caller", default="cli", help="Identity recorded on the jobs.")
    args = parser.parse_args()

    if not args.poi_ids and not (args.region or args.category or args.max_score is not None):
        parser.error("pass POI ids or at least one of --region, --category, --max-score")

    configure_logging()
    job_queue = JobQueue(backend=build_queue_backend(SessionLocal), settings=get_pipeline_settings())
    service = AuditTriggerService(session_factory=SessionLocal, job_queue=job_queue)
    triggered_by = f"ADMIN:{args.caller}"
    if args.poi_ids:
        result = service.start_for_ids(
            args.poi_ids,
            triggered_by=triggered_by,
            priority=args.priority,
        )
    else:
        result = service.start_for_filter(
            POIFilter(region=args.region, category=args.category, max_score=args.max_score),
            limit=args.limit,
            triggered_by=triggered_by,
            priority=args.priority,
        )

    payload = {
        "requested": result.requested,
        "enqueued": result.enqueued,
        "deduplicated": result.deduplicated,
        "missing": [str(poi_id) for poi_id in result.missing],
    }
    print(json.dumps(payload, indent=2))
    return 0 if not result.missing else 1


if __name__ == "__main__":
    raise SystemExit(main())
