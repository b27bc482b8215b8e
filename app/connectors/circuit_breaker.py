"""
app/connectors/circuit_breaker.py

Trips on sustained external-call failures so callers stop hammering a dead service.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from app.logging_utils import log_event

logger = logging.getLogger(__name__)


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    After ``failure_threshold`` consecutive failures the circuit opens and
    ``allow_request`` returns False until ``reset_timeout_seconds`` have
    passed. The next request is then let through as a probe: success closes
    the circuit, failure re-opens it.
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout_seconds = max(0.0, reset_timeout_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> str:
        with self._lock:
            return self._current_state()

    def allow_request(self) -> bool:
        with self._lock:
            state = self._current_state()
            if state == CircuitState.OPEN:
                return False
            if state == CircuitState.HALF_OPEN:
                # Only one probe at a time; the probe result decides the state.
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                log_event(logger, logging.INFO, "circuit_closed", circuit=self.name)
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if self._consecutive_failures >= self._failure_threshold:
                if self._state != CircuitState.OPEN:
                    log_event(
                        logger,
                        logging.WARNING,
                        "circuit_opened",
                        circuit=self.name,
                        consecutive_failures=self._consecutive_failures,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def _current_state(self) -> str:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self._reset_timeout_seconds
        ):
            self._state = CircuitState.HALF_OPEN
        return self._state
