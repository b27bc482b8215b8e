"""
costs/pricing.py

Unit prices keyed by (service, operation).

LLM prices are per single token and split by direction, so one completion
produces two ledger entries: ``<model>:input`` and ``<model>:output``.
"""

from __future__ import annotations

from decimal import Decimal

from db.models.cost_entry import CostService

_PER_1K = Decimal("1000")

# USD per 1K tokens (input, output).
_LLM_RATES_PER_1K: dict[str, tuple[str, str]] = {
    "gpt-4o": ("0.005", "0.015"),
    "gpt-4o-mini": ("0.00015", "0.0006"),
    "gpt-4-turbo": ("0.01", "0.03"),
    "gpt-3.5-turbo": ("0.0005", "0.0015"),
}

_FLAT_RATES: dict[tuple[str, str], str] = {
    (CostService.GEOCODE, "find_place"): "0.017",
    (CostService.GEOCODE, "place_details"): "0.017",
    (CostService.GEOCODE, "text_search"): "0.032",
    (CostService.GEOCODE, "nearby_search"): "0.032",
    (CostService.CRAWL, "page_load"): "0.001",
    (CostService.MAIL, "send"): "0.0001",
}


class UnknownPriceError(KeyError):
    """Raised when no rate is configured for a (service, operation) pair."""


class PriceBook:
    def __init__(self, rates: dict[tuple[str, str], Decimal]) -> None:
        self._rates = dict(rates)

    def unit_cost(self, service: str, operation: str) -> Decimal:
        try:
            return self._rates[(service, operation)]
        except KeyError:
            raise UnknownPriceError(f"No price for service={service!r} operation={operation!r}") from None

    def llm_operations(self, model: str) -> tuple[str, str]:
        """
        Ledger operation names for input and output tokens of ``model``.

        Unknown models are billed at gpt-4o rates.
        """

        if (CostService.LLM, f"{model}:input") not in self._rates:
            model = "gpt-4o"
        return f"{model}:input", f"{model}:output"


def default_price_book() -> PriceBook:
    rates: dict[tuple[str, str], Decimal] = {
        key: Decimal(value) for key, value in _FLAT_RATES.items()
    }
    for model, (input_rate, output_rate) in _LLM_RATES_PER_1K.items():
        rates[(CostService.LLM, f"{model}:input")] = Decimal(input_rate) / _PER_1K
        rates[(CostService.LLM, f"{model}:output")] = Decimal(output_rate) / _PER_1K
    return PriceBook(rates)
