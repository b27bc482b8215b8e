"""
Enrich stage: look the POI up in the places API and store the maps snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from app.connectors.places import PlacesClient, candidate_to_poi_data, place_details_to_poi_data
from app.domain.pipeline import AuditJobPayload, EnrichJobPayload, QueueName
from app.logging_utils import log_event
from app.pipeline.queue import QueuedJob
from app.pipeline.results import CallResult, FailureKind
from app.pipeline.stages.base import FollowUp, StageHandler, StageOutput
from db.repositories.poi_repository import POIRepository

logger = logging.getLogger(__name__)


class EnrichStage(StageHandler):
    """
    A transient lookup failure fails the attempt. A definite miss or a
    failed details call completes the stage with whatever data it has.
    """

    queue = QueueName.ENRICH

    def __init__(self, *, session_factory: Callable[[], Session], places: PlacesClient) -> None:
        self._session_factory = session_factory
        self._places = places

    def run(self, job: QueuedJob, payload: EnrichJobPayload) -> CallResult[StageOutput]:
        poi_id = payload.poi_id
        with self._session_factory() as db:
            poi = POIRepository(db).get(poi_id)
            if poi is None:
                return CallResult.terminal("poi_not_found", detail=str(poi_id))
            name = payload.name or poi.name
            address = payload.address or " ".join(
                part for part in (poi.street, poi.postal_code, poi.city) if part
            )
            website_data = dict(poi.website_data or {})

        found = self._places.find_place(name, address or None, poi_id=poi_id)
        maps_data: dict[str, Any] = {}
        if found.failure == FailureKind.TRANSIENT:
            return CallResult.transient(found.error or "places_unavailable", detail=found.detail)
        if found.ok:
            candidate = found.unwrap()
            details = self._places.get_place_details(candidate.place_id, poi_id=poi_id)
            if details.ok:
                maps_data = place_details_to_poi_data(details.unwrap())
            else:
                log_event(
                    logger,
                    logging.WARNING,
                    "enrich_details_failed",
                    poi_id=poi_id,
                    place_id=candidate.place_id,
                    error=details.error,
                )
                maps_data = candidate_to_poi_data(candidate)
        else:
            log_event(logger, logging.INFO, "enrich_no_match", poi_id=poi_id, error=found.error)

        with self._session_factory() as db, db.begin():
            pois = POIRepository(db)
            poi = pois.get(poi_id)
            if poi is None:
                return CallResult.terminal("poi_not_found", detail=str(poi_id))
            pois.store_maps_data(poi, maps_data)

        return CallResult.success(
            StageOutput(
                follow_ups=[
                    FollowUp(
                        QueueName.AUDIT,
                        AuditJobPayload(poi_id=poi_id, website_data=website_data, maps_data=maps_data),
                    )
                ],
                summary={"matched": found.ok, "maps_fields": len(maps_data)},
            )
        )
