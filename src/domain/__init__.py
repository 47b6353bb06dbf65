"""Domain models and the cost-basis engine for the crypto taxes tool.

This package contains in-memory (Pydantic) models describing processed
transactions, acquisition lots and tax events, together with the FIFO ledger,
the weighted-average tracker and the Estonian tax rules. They are independent
from persistence models so that business logic and testing can evolve without
DB coupling.
"""

__all__ = [
    "calculator",
    "disposal",
    "estonia_rules",
    "inventory",
    "ledger",
    "records",
    "tax_event",
    "tax_summary",
    "weighted_average",
]
