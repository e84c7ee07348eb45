"""Commission calculation: rate resolution and the waterfall."""

from brokerage_ledger.calculators.rate_resolver import RateResolver, choose_rate, pick_effective_rate
from brokerage_ledger.calculators.types import (
    AppliedRates,
    ExpenseBreakdown,
    WaterfallInput,
    WaterfallResult,
)
from brokerage_ledger.calculators.waterfall import (
    compute_waterfall,
    normalize_breakdown,
    normalize_expenses,
    run_waterfall,
)

__all__ = [
    "AppliedRates",
    "ExpenseBreakdown",
    "RateResolver",
    "WaterfallInput",
    "WaterfallResult",
    "choose_rate",
    "compute_waterfall",
    "normalize_breakdown",
    "normalize_expenses",
    "pick_effective_rate",
    "run_waterfall",
]
