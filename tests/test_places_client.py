"""
tests/test_places_client.py

Pytest unit tests for PlacesClient and the circuit breaker guarding it.

Coverage
--------
- Find-place success and text-search fallback
- No match is PERMANENT; missing API key is PERMANENT without a request
- Retryable statuses are retried and every response is billed
- Network errors are retried but not billed
- Details mapping onto the maps snapshot
- Circuit breaker opens, rejects, and half-opens after the reset timeout
"""

from __future__ import annotations

import uuid

import pytest
import requests
from sqlalchemy import select

from app.config import PlacesSettings
from app.connectors.circuit_breaker import CircuitBreaker, CircuitState
from app.connectors.places import PlaceCandidate, PlacesClient, candidate_to_poi_data, place_details_to_poi_data
from app.pipeline.results import FailureKind
from costs.ledger import CostLedger
from db.models.cost_entry import CostEntry, CostService
from fakes import FakeHttpSession, FakeResponse

BASE = "https://places.test/api"
FIND = f"{BASE}/findplacefromtext/json"
TEXT = f"{BASE}/textsearch/json"
DETAILS = f"{BASE}/details/json"

CANDIDATE = {
    "place_id": "ChIJ-linde",
    "name": "Gasthof Zur Linde",
    "formatted_address": "Hauptstrasse 1, 79098 Freiburg",
    "geometry": {"location": {"lat": 47.995, "lng": 7.85}},
    "types": ["restaurant"],
    "business_status": "OPERATIONAL",
}


def _json(data, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, json_data=data, headers={"Content-Type": "application/json"})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> PlacesSettings:
    return PlacesSettings(api_key="test-key", base_url=BASE, max_retries=3, backoff_initial_seconds=1.0)


@pytest.fixture()
def ledger(session_factory) -> CostLedger:
    return CostLedger(session_factory=session_factory)


def _client(session, settings, ledger=None, breaker=None, sleeps=None) -> PlacesClient:
    return PlacesClient(
        settings=settings,
        cost_ledger=ledger,
        session=session,
        circuit_breaker=breaker,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def _billed(session_factory) -> list[str]:
    with session_factory() as db:
        entries = db.scalars(select(CostEntry).order_by(CostEntry.created_at)).all()
        return [entry.operation for entry in entries if entry.service == CostService.GEOCODE]


# ---------------------------------------------------------------------------
# Find place
# ---------------------------------------------------------------------------


class TestFindPlace:
    def test_returns_first_candidate(self, settings, ledger, session_factory) -> None:
        session = FakeHttpSession({FIND: _json({"status": "OK", "candidates": [CANDIDATE]})})
        poi_id = uuid.uuid4()

        result = _client(session, settings, ledger).find_place("Gasthof Zur Linde", "Freiburg", poi_id=poi_id)

        candidate = result.unwrap()
        assert candidate.place_id == "ChIJ-linde"
        assert (candidate.latitude, candidate.longitude) == (47.995, 7.85)
        assert session.calls[0]["params"]["input"] == "Gasthof Zur Linde Freiburg"
        assert session.calls[0]["params"]["key"] == "test-key"
        assert _billed(session_factory) == ["find_place"]

    def test_falls_back_to_text_search(self, settings, ledger, session_factory) -> None:
        session = FakeHttpSession(
            {
                FIND: _json({"status": "ZERO_RESULTS", "candidates": []}),
                TEXT: _json({"status": "OK", "results": [CANDIDATE]}),
            }
        )

        result = _client(session, settings, ledger).find_place("Linde", "Hauptstrasse 1, Freiburg")

        assert result.unwrap().name == "Gasthof Zur Linde"
        assert _billed(session_factory) == ["find_place", "text_search"]

    def test_no_match_is_permanent(self, settings) -> None:
        session = FakeHttpSession({FIND: _json({"status": "ZERO_RESULTS", "candidates": []})})

        result = _client(session, settings).find_place("Unbekannt")

        assert result.failure == FailureKind.PERMANENT
        assert result.error == "not_found"
        # No address, so no text-search fallback.
        assert session.urls() == [FIND]

    def test_missing_api_key(self) -> None:
        session = FakeHttpSession()

        result = _client(session, PlacesSettings(api_key=None, base_url=BASE)).find_place("Linde")

        assert result.failure == FailureKind.PERMANENT
        assert result.error == "api_key_missing"
        assert session.calls == []

    def test_empty_query(self, settings) -> None:
        assert _client(FakeHttpSession(), settings).find_place("  ").error == "empty_query"


# ---------------------------------------------------------------------------
# Retries and billing
# ---------------------------------------------------------------------------


class TestRetries:
    def test_retryable_status_is_retried_and_billed(self, settings, ledger, session_factory) -> None:
        session = FakeHttpSession(
            {FIND: [_json({}, 503), _json({"status": "OVER_QUERY_LIMIT"}), _json({"status": "OK", "candidates": [CANDIDATE]})]}
        )
        sleeps: list[float] = []

        result = _client(session, settings, ledger, sleeps=sleeps).find_place("Linde")

        assert result.ok
        assert len(session.calls) == 3
        assert _billed(session_factory) == ["find_place"] * 3
        assert sleeps[0] == pytest.approx(1.0, rel=0.1)
        assert sleeps[1] == pytest.approx(2.0, rel=0.1)

    def test_exhausted_retries_are_transient(self, settings, ledger, session_factory) -> None:
        session = FakeHttpSession({FIND: _json({}, 500)})

        result = _client(session, settings, ledger).find_place("Linde")

        assert result.failure == FailureKind.TRANSIENT
        assert result.error == "http_500"
        assert len(_billed(session_factory)) == 3

    def test_network_error_is_not_billed(self, settings, ledger, session_factory) -> None:
        session = FakeHttpSession({FIND: requests.Timeout("read timed out")})

        result = _client(session, settings, ledger).find_place("Linde")

        assert result.failure == FailureKind.TRANSIENT
        assert len(session.calls) == 3
        assert _billed(session_factory) == []

    def test_request_denied_is_permanent(self, settings) -> None:
        session = FakeHttpSession({FIND: _json({"status": "REQUEST_DENIED", "error_message": "bad key"})})

        result = _client(session, settings).find_place("Linde")

        assert result.failure == FailureKind.PERMANENT
        assert result.error == "request_denied"
        assert len(session.calls) == 1


# ---------------------------------------------------------------------------
# Details
# ---------------------------------------------------------------------------


class TestDetails:
    def test_maps_details_onto_snapshot(self, settings) -> None:
        session = FakeHttpSession(
            {
                DETAILS: _json(
                    {
                        "status": "OK",
                        "result": {
                            **CANDIDATE,
                            "international_phone_number": "+49 761 123456",
                            "website": "https://gasthof-linde.de/",
                            "url": "https://maps.google.com/?cid=1",
                            "opening_hours": {"weekday_text": ["Montag: 11:00-22:00", "Dienstag: Ruhetag"]},
                            "rating": 4.6,
                            "user_ratings_total": 312,
                        },
                    }
                )
            }
        )

        details = _client(session, settings).get_place_details("ChIJ-linde").unwrap()
        data = place_details_to_poi_data(details)

        assert data["phone"] == "+49 761 123456"
        assert data["opening_hours"] == "Montag: 11:00-22:00; Dienstag: Ruhetag"
        assert data["review_count"] == 312
        assert data["address"] == "Hauptstrasse 1, 79098 Freiburg"
        assert "price_level" not in data

    def test_missing_result_is_permanent(self, settings) -> None:
        session = FakeHttpSession({DETAILS: _json({"status": "NOT_FOUND"})})

        result = _client(session, settings).get_place_details("gone")

        assert result.failure == FailureKind.PERMANENT
        assert result.error == "details_not_found"

    def test_candidate_snapshot_drops_empty_values(self) -> None:
        data = candidate_to_poi_data(PlaceCandidate(place_id="p1", name="Linde"))

        assert data == {"place_id": "p1", "name": "Linde"}


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    def _breaker(self, now: list[float]) -> CircuitBreaker:
        return CircuitBreaker(name="places", failure_threshold=2, reset_timeout_seconds=30, clock=lambda: now[0])

    def test_opens_after_threshold_and_half_opens(self) -> None:
        now = [0.0]
        breaker = self._breaker(now)

        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

        now[0] = 30.0
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request() is True
        # One probe at a time.
        assert breaker.allow_request() is False

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_failed_probe_reopens(self) -> None:
        now = [0.0]
        breaker = self._breaker(now)
        breaker.record_failure()
        breaker.record_failure()
        now[0] = 31.0
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_open_circuit_short_circuits_client(self, settings) -> None:
        now = [0.0]
        breaker = self._breaker(now)
        session = FakeHttpSession({FIND: _json({}, 503)})

        first = _client(session, settings, breaker=breaker).find_place("Linde")
        calls_after_first = len(session.calls)
        second = _client(session, settings, breaker=breaker).find_place("Linde")

        assert first.failure == FailureKind.TRANSIENT
        assert calls_after_first == 2
        assert second.error == "circuit_open"
        assert len(session.calls) == calls_after_first
