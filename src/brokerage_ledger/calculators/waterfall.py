"""Commission waterfall and expense normalization.

Both functions are pure: no I/O and Decimal arithmetic in a fixed order so
results reproduce exactly across runs and reports.
"""

from __future__ import annotations

from decimal import Decimal

from brokerage_ledger.calculators.types import ExpenseBreakdown, WaterfallInput, WaterfallResult
from brokerage_ledger.money import HUNDRED, ZERO, to_decimal


def normalize_expenses(
    broker: Decimal | float | None = None,
    lawyer: Decimal | float | None = None,
    referral: Decimal | float | None = None,
    other: Decimal | float | None = None,
    external: Decimal | float | None = None,
) -> ExpenseBreakdown:
    """Reconcile the four-way breakdown with the legacy aggregate.

    If the breakdown is empty but the aggregate is not, the whole aggregate
    is treated as `other`. The aggregate is then always recomputed as the
    breakdown sum, so normalizing twice changes nothing.
    """
    broker_d = to_decimal(broker)
    lawyer_d = to_decimal(lawyer)
    referral_d = to_decimal(referral)
    other_d = to_decimal(other)
    external_d = to_decimal(external)

    if broker_d + lawyer_d + referral_d + other_d == ZERO and external_d != ZERO:
        other_d = external_d

    return ExpenseBreakdown(
        broker=broker_d,
        lawyer=lawyer_d,
        referral=referral_d,
        other=other_d,
        external=broker_d + lawyer_d + referral_d + other_d,
    )


def normalize_breakdown(expenses: ExpenseBreakdown) -> ExpenseBreakdown:
    """normalize_expenses() for an existing breakdown."""
    return normalize_expenses(
        broker=expenses.broker,
        lawyer=expenses.lawyer,
        referral=expenses.referral,
        other=expenses.other,
        external=expenses.external,
    )


def compute_waterfall(
    gross_commission: Decimal | float,
    tax_rate: Decimal | float,
    referral_expense: Decimal | float,
    broker_expense: Decimal | float,
    lawyer_expense: Decimal | float,
    other_expense: Decimal | float,
    agent_rate: Decimal | float,
    rop_rate: Decimal | float,
) -> WaterfallResult:
    """Split a gross commission into taxes, payouts and net profit.

    The referral partner is paid off the top; agent and manager percentages
    apply to what remains. Net profit is not clamped, a negative value marks
    a loss-making deal.
    """
    gross = to_decimal(gross_commission)
    referral = to_decimal(referral_expense)

    taxes = gross * to_decimal(tax_rate) / HUNDRED
    cleaned_base = gross - referral
    rop_commission = cleaned_base * to_decimal(rop_rate) / HUNDRED
    agent_commission = cleaned_base * to_decimal(agent_rate) / HUNDRED
    other_costs = to_decimal(broker_expense) + to_decimal(lawyer_expense) + to_decimal(other_expense)
    net_profit = gross - taxes - referral - rop_commission - agent_commission - other_costs

    return WaterfallResult(
        taxes=taxes,
        cleaned_base=cleaned_base,
        rop_commission=rop_commission,
        agent_commission=agent_commission,
        net_profit=net_profit,
    )


def run_waterfall(inputs: WaterfallInput) -> WaterfallResult:
    """Normalize the expenses on `inputs` and compute the waterfall."""
    expenses = normalize_breakdown(inputs.expenses)
    return compute_waterfall(
        gross_commission=inputs.gross_commission,
        tax_rate=inputs.tax_rate,
        referral_expense=expenses.referral,
        broker_expense=expenses.broker,
        lawyer_expense=expenses.lawyer,
        other_expense=expenses.other,
        agent_rate=inputs.agent_rate,
        rop_rate=inputs.rop_rate,
    )
