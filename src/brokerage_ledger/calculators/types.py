"""Type definitions for the commission calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from brokerage_ledger.money import ZERO


@dataclass(frozen=True)
class ExpenseBreakdown:
    """Per-deal expenses: the four-way breakdown plus the legacy aggregate."""

    broker: Decimal = ZERO
    lawyer: Decimal = ZERO
    referral: Decimal = ZERO
    other: Decimal = ZERO
    external: Decimal = ZERO

    @property
    def breakdown_sum(self) -> Decimal:
        return self.broker + self.lawyer + self.referral + self.other

    @property
    def non_referral(self) -> Decimal:
        """Expenses deducted after the percentage splits."""
        return self.broker + self.lawyer + self.other


@dataclass(frozen=True)
class WaterfallInput:
    """Everything the waterfall needs for one deal."""

    gross_commission: Decimal
    tax_rate: Decimal
    expenses: ExpenseBreakdown
    agent_rate: Decimal
    rop_rate: Decimal


@dataclass(frozen=True)
class WaterfallResult:
    """Output of the commission waterfall."""

    taxes: Decimal
    cleaned_base: Decimal
    rop_commission: Decimal
    agent_commission: Decimal
    net_profit: Decimal


@dataclass(frozen=True)
class AppliedRates:
    """Rates chosen for a deal after the fallback pipeline ran."""

    agent_rate: Decimal
    rop_rate: Decimal
