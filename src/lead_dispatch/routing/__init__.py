"""Fair agent selection, fallback dispatch and the distribution ledger."""

from .ledger import DistributionLedger, DistributionState, DistributionDecision, LedgerContentionError
from .selector import SelectionReason, SelectionResult, select_next, stable_order
from .dispatcher import FallbackDispatcher

__all__ = [
    "DistributionLedger",
    "DistributionState",
    "DistributionDecision",
    "LedgerContentionError",
    "SelectionReason",
    "SelectionResult",
    "select_next",
    "stable_order",
    "FallbackDispatcher",
]
