"""Tests for the commission waterfall and expense normalization."""

from decimal import Decimal

from brokerage_ledger.calculators import (
    ExpenseBreakdown,
    WaterfallInput,
    compute_waterfall,
    normalize_breakdown,
    normalize_expenses,
    run_waterfall,
)


class TestComputeWaterfall:
    """Test the split of a gross commission."""

    def test_commission_split_scenario(self):
        """300k gross, 6% tax, 20k referral, 15k other costs, 50/10 split."""
        result = compute_waterfall(
            gross_commission=Decimal("300000"),
            tax_rate=Decimal("6"),
            referral_expense=Decimal("20000"),
            broker_expense=Decimal("5000"),
            lawyer_expense=Decimal("10000"),
            other_expense=Decimal("0"),
            agent_rate=Decimal("50"),
            rop_rate=Decimal("10"),
        )

        assert result.taxes == Decimal("18000")
        assert result.cleaned_base == Decimal("280000")
        assert result.rop_commission == Decimal("28000")
        assert result.agent_commission == Decimal("140000")
        assert result.net_profit == Decimal("79000")

    def test_negative_net_profit_is_not_clamped(self):
        """Test that a loss-making deal keeps its negative net profit."""
        result = compute_waterfall(
            gross_commission=Decimal("10000"),
            tax_rate=Decimal("6"),
            referral_expense=Decimal("0"),
            broker_expense=Decimal("9000"),
            lawyer_expense=Decimal("0"),
            other_expense=Decimal("0"),
            agent_rate=Decimal("50"),
            rop_rate=Decimal("10"),
        )

        # 10000 - 600 - 1000 - 5000 - 9000
        assert result.net_profit == Decimal("-5600")

    def test_floats_are_accepted(self):
        result = compute_waterfall(1000.0, 6, 0, 0, 0, 0, 50, 0)

        assert result.agent_commission == Decimal("500")
        assert result.taxes == Decimal("60")

    def test_run_waterfall_normalizes_legacy_expenses(self):
        """Test that the legacy aggregate is deducted as other expense."""
        result = run_waterfall(
            WaterfallInput(
                gross_commission=Decimal("100000"),
                tax_rate=Decimal("0"),
                expenses=ExpenseBreakdown(external=Decimal("5000")),
                agent_rate=Decimal("0"),
                rop_rate=Decimal("0"),
            )
        )

        assert result.cleaned_base == Decimal("100000")
        assert result.net_profit == Decimal("95000")


class TestNormalizeExpenses:
    """Test reconciliation of the breakdown with the legacy aggregate."""

    def test_empty_breakdown_falls_back_to_aggregate(self):
        expenses = normalize_expenses(external=Decimal("7500"))

        assert expenses.other == Decimal("7500")
        assert expenses.external == Decimal("7500")

    def test_breakdown_wins_over_aggregate(self):
        """Test that a stale aggregate is recomputed from the breakdown."""
        expenses = normalize_expenses(
            broker=Decimal("1000"),
            lawyer=Decimal("2000"),
            external=Decimal("99999"),
        )

        assert expenses.other == Decimal("0")
        assert expenses.external == Decimal("3000")

    def test_none_values_are_zero(self):
        expenses = normalize_expenses(None, None, None, None, None)

        assert expenses.breakdown_sum == Decimal("0")
        assert expenses.external == Decimal("0")

    def test_normalizing_twice_is_a_no_op(self):
        once = normalize_expenses(external=Decimal("1234.56"))

        assert normalize_breakdown(once) == once

    def test_non_referral_excludes_referral(self):
        expenses = normalize_expenses(
            broker=Decimal("1"), lawyer=Decimal("2"), referral=Decimal("4"), other=Decimal("8")
        )

        assert expenses.non_referral == Decimal("11")
        assert expenses.external == Decimal("15")
