"""
app/connectors/places.py

Places API client used to enrich POIs with third-party listing data.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from app import metrics
from app.config import PlacesSettings
from app.connectors.circuit_breaker import CircuitBreaker
from app.logging_utils import log_event
from app.pipeline.backoff import compute_backoff
from app.pipeline.results import CallResult, FailureKind
from costs.ledger import CostLedger
from db.models.cost_entry import CostService

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
# API-level statuses (HTTP 200 body) worth retrying.
RETRYABLE_API_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}
EMPTY_API_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}

FIND_PLACE_FIELDS = "place_id,name,formatted_address,geometry,types,business_status"
DETAILS_FIELDS = ",".join(
    [
        "place_id",
        "name",
        "formatted_address",
        "formatted_phone_number",
        "international_phone_number",
        "website",
        "url",
        "geometry",
        "opening_hours",
        "price_level",
        "rating",
        "user_ratings_total",
        "types",
        "business_status",
    ]
)


@dataclass(frozen=True)
class PlaceCandidate:
    place_id: str
    name: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    types: list[str] = field(default_factory=list)
    business_status: str | None = None


@dataclass(frozen=True)
class PlaceDetails:
    place_id: str
    name: str | None = None
    formatted_address: str | None = None
    formatted_phone_number: str | None = None
    international_phone_number: str | None = None
    website: str | None = None
    maps_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    weekday_text: list[str] = field(default_factory=list)
    price_level: int | None = None
    rating: float | None = None
    user_ratings_total: int | None = None
    types: list[str] = field(default_factory=list)
    business_status: str | None = None


def _location(payload: dict[str, Any]) -> tuple[float | None, float | None]:
    location = (payload.get("geometry") or {}).get("location") or {}
    return location.get("lat"), location.get("lng")


def place_details_to_poi_data(details: PlaceDetails) -> dict[str, Any]:
    """
    Map place details onto the maps snapshot stored on the POI.
    """

    data: dict[str, Any] = {
        "place_id": details.place_id,
        "name": details.name,
        "address": details.formatted_address,
        "phone": details.international_phone_number or details.formatted_phone_number,
        "website": details.website,
        "latitude": details.latitude,
        "longitude": details.longitude,
        "opening_hours": "; ".join(details.weekday_text) or None,
        "price_level": details.price_level,
        "rating": details.rating,
        "review_count": details.user_ratings_total,
        "maps_url": details.maps_url,
        "business_status": details.business_status,
    }
    return {key: value for key, value in data.items() if value is not None}


def candidate_to_poi_data(candidate: PlaceCandidate) -> dict[str, Any]:
    """Partial maps snapshot used when the details lookup failed."""
    data: dict[str, Any] = {
        "place_id": candidate.place_id,
        "name": candidate.name,
        "address": candidate.address,
        "latitude": candidate.latitude,
        "longitude": candidate.longitude,
        "business_status": candidate.business_status,
    }
    return {key: value for key, value in data.items() if value is not None}


class PlacesClient:
    """
    Find-place / details client with call-level retry and per-attempt cost tracking.

    Every HTTP response from the API is billed, whatever its outcome.
    Results are returned as CallResult values; nothing is raised for
    network or API errors.
    """

    def __init__(
        self,
        *,
        settings: PlacesSettings,
        cost_ledger: CostLedger | None = None,
        session: requests.Session | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._cost_ledger = cost_ledger
        self._session = session or requests.Session()
        self._circuit_breaker = circuit_breaker
        self._sleep = sleep

    def find_place(
        self,
        name: str,
        address: str | None = None,
        *,
        poi_id: uuid.UUID | None = None,
    ) -> CallResult[PlaceCandidate]:
        """
        Resolve the best candidate for ``name`` + ``address``.

        Falls back to a text search when find-place returns nothing and an
        address part is available. No match at all is a PERMANENT failure.
        """

        query = " ".join(part for part in (name, address) if part).strip()
        if not query:
            return CallResult.permanent("empty_query")

        result = self._call(
            "findplacefromtext",
            "find_place",
            {"input": query, "inputtype": "textquery", "fields": FIND_PLACE_FIELDS},
            poi_id=poi_id,
        )
        if not result.ok:
            return result  # type: ignore[return-value]

        candidates = result.unwrap().get("candidates") or []
        if not candidates and address:
            fallback = self._call("textsearch", "text_search", {"query": query}, poi_id=poi_id)
            if not fallback.ok:
                return fallback  # type: ignore[return-value]
            candidates = fallback.unwrap().get("results") or []

        if not candidates:
            log_event(logger, logging.INFO, "place_not_found", query=query, poi_id=poi_id)
            return CallResult.permanent("not_found", detail=query)

        candidate = candidates[0]
        latitude, longitude = _location(candidate)
        log_event(
            logger,
            logging.INFO,
            "place_found",
            place_id=candidate.get("place_id"),
            name=candidate.get("name"),
            poi_id=poi_id,
        )
        return CallResult.success(
            PlaceCandidate(
                place_id=candidate["place_id"],
                name=candidate.get("name"),
                address=candidate.get("formatted_address") or candidate.get("vicinity"),
                latitude=latitude,
                longitude=longitude,
                types=list(candidate.get("types") or []),
                business_status=candidate.get("business_status"),
            )
        )

    def get_place_details(
        self,
        place_id: str,
        *,
        poi_id: uuid.UUID | None = None,
    ) -> CallResult[PlaceDetails]:
        result = self._call(
            "details",
            "place_details",
            {"place_id": place_id, "fields": DETAILS_FIELDS},
            poi_id=poi_id,
        )
        if not result.ok:
            return result  # type: ignore[return-value]

        payload = result.unwrap().get("result")
        if not payload:
            return CallResult.permanent("details_not_found", detail=place_id)

        latitude, longitude = _location(payload)
        opening_hours = payload.get("opening_hours") or {}
        return CallResult.success(
            PlaceDetails(
                place_id=payload.get("place_id", place_id),
                name=payload.get("name"),
                formatted_address=payload.get("formatted_address"),
                formatted_phone_number=payload.get("formatted_phone_number"),
                international_phone_number=payload.get("international_phone_number"),
                website=payload.get("website"),
                maps_url=payload.get("url"),
                latitude=latitude,
                longitude=longitude,
                weekday_text=list(opening_hours.get("weekday_text") or []),
                price_level=payload.get("price_level"),
                rating=payload.get("rating"),
                user_ratings_total=payload.get("user_ratings_total"),
                types=list(payload.get("types") or []),
                business_status=payload.get("business_status"),
            )
        )

    def _call(
        self,
        endpoint: str,
        operation: str,
        params: dict[str, Any],
        *,
        poi_id: uuid.UUID | None,
    ) -> CallResult[dict[str, Any]]:
        if not self._settings.api_key:
            log_event(logger, logging.WARNING, "places_api_key_missing", operation=operation)
            return CallResult.permanent("api_key_missing")

        url = f"{self._settings.base_url.rstrip('/')}/{endpoint}/json"
        query = {**params, "key": self._settings.api_key, "language": self._settings.language}
        last: CallResult[dict[str, Any]] = CallResult.transient("not_attempted")

        for attempt in range(1, self._settings.max_retries + 1):
            if self._circuit_breaker is not None and not self._circuit_breaker.allow_request():
                metrics.API_REQUESTS_TOTAL.labels(service=CostService.GEOCODE, outcome="circuit_open").inc()
                return CallResult.transient("circuit_open")

            last = self._attempt(url, operation, query, poi_id=poi_id)
            metrics.API_REQUESTS_TOTAL.labels(
                service=CostService.GEOCODE,
                outcome="ok" if last.ok else last.failure.value,  # type: ignore[union-attr]
            ).inc()

            if self._circuit_breaker is not None:
                if last.failure == FailureKind.TRANSIENT:
                    self._circuit_breaker.record_failure()
                else:
                    self._circuit_breaker.record_success()

            if last.failure != FailureKind.TRANSIENT:
                return last
            if attempt >= self._settings.max_retries:
                break

            delay = compute_backoff(attempt, base_seconds=self._settings.backoff_initial_seconds)
            logger.warning(
                "Places request retry operation=%s attempt=%s/%s wait_seconds=%.2f error=%s",
                operation,
                attempt,
                self._settings.max_retries,
                delay,
                last.error,
            )
            self._sleep(delay)

        logger.error("Places request exhausted retries operation=%s error=%s", operation, last.error)
        return last

    def _attempt(
        self,
        url: str,
        operation: str,
        query: dict[str, Any],
        *,
        poi_id: uuid.UUID | None,
    ) -> CallResult[dict[str, Any]]:
        try:
            response = self._session.get(url, params=query, timeout=self._settings.timeout_seconds)
        except (requests.Timeout, requests.ConnectionError) as exc:
            return CallResult.transient("network_error", detail=str(exc))
        except requests.RequestException as exc:
            return CallResult.permanent("request_error", detail=str(exc))

        # The request reached the API and consumed quota.
        if self._cost_ledger is not None:
            self._cost_ledger.record(
                service=CostService.GEOCODE,
                operation=operation,
                poi_id=poi_id,
                details={"http_status": response.status_code},
            )

        if response.status_code in RETRYABLE_STATUS_CODES:
            return CallResult.transient(f"http_{response.status_code}")
        if response.status_code >= 400:
            return CallResult.permanent(f"http_{response.status_code}")

        try:
            data = response.json()
        except ValueError:
            return CallResult.transient("invalid_json")

        api_status = data.get("status", "OK")
        if api_status in RETRYABLE_API_STATUSES:
            return CallResult.transient(api_status.lower(), detail=data.get("error_message"))
        if api_status != "OK" and api_status not in EMPTY_API_STATUSES:
            return CallResult.permanent(api_status.lower(), detail=data.get("error_message"))
        return CallResult.success(data)
