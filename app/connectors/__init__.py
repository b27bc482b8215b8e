"""
app/connectors package marker.
"""

from app.connectors.circuit_breaker import CircuitBreaker, CircuitState
from app.connectors.places import PlaceCandidate, PlaceDetails, PlacesClient

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "PlaceCandidate",
    "PlaceDetails",
    "PlacesClient",
]
