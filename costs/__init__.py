"""
Cost ledger and budget projection for priced external calls.
"""

from costs.ledger import BudgetStatus, CostLedger, CostProjection, CostSummary
from costs.pricing import PriceBook, default_price_book

__all__ = [
    "BudgetStatus",
    "CostLedger",
    "CostProjection",
    "CostSummary",
    "PriceBook",
    "default_price_book",
]
