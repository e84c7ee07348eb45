"""Tests for the cash forecast projector."""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from brokerage_ledger.models import CashFlowType, DealStatus
from brokerage_ledger.models.enums import AGENT_PAYOUT_CATEGORY
from brokerage_ledger.schemas import CashFlowCreate, DealCreate
from brokerage_ledger.services import CashLedgerReconciler, DealReconciler, ForecastProjector
from brokerage_ledger.services.forecast_service import forecast_window

TODAY = date(2024, 5, 15)


async def _manual_deal(session, settings, agent, status, net_profit, **fields):
    return await DealReconciler(session, settings).create_deal(
        DealCreate(
            agent_id=agent.employee_id,
            status=status,
            commissions_manual=True,
            net_profit=Decimal(net_profit),
            **fields,
        ),
        today=TODAY,
    )


@pytest_asyncio.fixture
async def pipeline(session, settings, agent, account):
    """Account drained to 0 by May rent; 5000 expected from an open deal.

    Obligations: rent 1000 monthly (paid for May), one-off 400 in May and
    100 in June, a planned payroll payout in May, planned income 700 in June.
    """
    await _manual_deal(session, settings, agent, DealStatus.DEPOSIT, "5000")
    await _manual_deal(
        session, settings, agent, DealStatus.CLOSED, "3000", deal_date=date(2023, 3, 10)
    )
    await _manual_deal(session, settings, agent, DealStatus.CANCELLED, "9999")

    ledger = CashLedgerReconciler(session, settings)
    flows = [
        CashFlowCreate(amount=Decimal("1000"), category="Rent", planned_date=date(2024, 1, 1), is_recurring=True),
        CashFlowCreate(
            amount=Decimal("1000"),
            category="Rent",
            actual_date=date(2024, 5, 5),
            account_id=account.account_id,
        ),
        CashFlowCreate(amount=Decimal("400"), category="Marketing", planned_date=date(2024, 5, 20)),
        CashFlowCreate(amount=Decimal("100"), category="Office", planned_date=date(2024, 6, 3)),
        CashFlowCreate(amount=Decimal("50"), category=AGENT_PAYOUT_CATEGORY, planned_date=date(2024, 5, 25)),
        CashFlowCreate(
            flow_type=CashFlowType.INCOME,
            amount=Decimal("700"),
            category="Consulting",
            planned_date=date(2024, 6, 10),
        ),
    ]
    for flow in flows:
        await ledger.create_cash_flow(flow)


class TestForecastWindow:
    def test_default_starts_this_month(self):
        months, historical = forecast_window(3, None, TODAY)

        assert months == [date(2024, 5, 1), date(2024, 6, 1), date(2024, 7, 1)]
        assert historical is False

    def test_future_year_starts_in_january(self):
        months, historical = forecast_window(2, 2025, TODAY)

        assert months == [date(2025, 1, 1), date(2025, 2, 1)]
        assert historical is False

    def test_past_year_is_historical(self):
        months, historical = forecast_window(3, 2023, TODAY)

        assert len(months) == 12
        assert months[0] == date(2023, 1, 1)
        assert historical is True

    def test_window_crosses_year_end(self):
        months, _ = forecast_window(3, None, date(2024, 11, 30))

        assert months[-1] == date(2025, 1, 1)


class TestProject:
    """Test the monthly balance chain."""

    @pytest.mark.asyncio
    async def test_forward_projection(self, session, settings, pipeline):
        forecast = await ForecastProjector(session, settings).project(3, today=TODAY)

        may, june, july = forecast
        assert may.month_key == "2024-05"
        assert may.opening_balance == Decimal("0")
        assert may.expected_income == Decimal("5000")
        # Rent already paid for May; payroll payout excluded
        assert may.planned_expenses == Decimal("400")
        assert may.actual_expenses == Decimal("1000")
        assert may.closing_balance == Decimal("4600")

        assert june.opening_balance == Decimal("4600")
        assert june.expected_income == Decimal("700")
        assert june.planned_expenses == Decimal("1100")
        assert june.closing_balance == Decimal("4200")

        assert july.expected_income == Decimal("0")
        assert july.closing_balance == Decimal("3200")
        assert all(m.status == "positive" for m in forecast)

    @pytest.mark.asyncio
    async def test_negative_closing_is_critical(self, session, settings, pipeline):
        forecast = await ForecastProjector(session, settings).project(12, today=TODAY)

        assert forecast[5].closing_balance == Decimal("200")
        assert forecast[5].status == "positive"
        assert forecast[6].closing_balance == Decimal("-800")
        assert forecast[6].status == "critical"

    @pytest.mark.asyncio
    async def test_historical_income_from_closed_deals(self, session, settings, pipeline):
        forecast = await ForecastProjector(session, settings).project(year=2023, today=TODAY)

        assert len(forecast) == 12
        assert forecast[0].expected_income == Decimal("0")
        assert forecast[2].month_key == "2023-03"
        assert forecast[2].expected_income == Decimal("3000")

    @pytest.mark.asyncio
    async def test_default_horizon_from_settings(self, session, settings, pipeline):
        forecast = await ForecastProjector(session, settings).project(today=TODAY)

        assert len(forecast) == settings.forecast_months


class TestExpenseDetails:
    @pytest.mark.asyncio
    async def test_items_match_planned_expenses(self, session, settings, pipeline):
        projector = ForecastProjector(session, settings)

        details = await projector.expense_details("2024-06")
        forecast = await projector.project(3, today=TODAY)

        assert [(i.category, i.source) for i in details.items] == [
            ("Rent", "recurring"),
            ("Office", "planned"),
        ]
        assert details.total == forecast[1].planned_expenses

    @pytest.mark.asyncio
    async def test_paid_recurring_category_dropped(self, session, settings, pipeline):
        details = await ForecastProjector(session, settings).expense_details("2024-05")

        assert [i.category for i in details.items] == ["Marketing"]


class TestTreasuryKpis:
    @pytest.mark.asyncio
    async def test_pipeline_buckets(self, session, settings, agent):
        await _manual_deal(session, settings, agent, DealStatus.DEPOSIT, "5000")
        await _manual_deal(session, settings, agent, DealStatus.REGISTRATION, "2000")
        await _manual_deal(session, settings, agent, DealStatus.WAITING_PAYMENT, "1000")
        await _manual_deal(session, settings, agent, DealStatus.CLOSED, "7000")

        kpis = await ForecastProjector(session, settings).treasury_kpis()

        assert kpis.expected_total.value == Decimal("8000")
        assert kpis.expected_total.count == 3
        assert kpis.expected_deposits.value == Decimal("5000")
        assert kpis.expected_deposits.count == 1
        assert kpis.expected_on_payment.value == Decimal("3000")
        assert kpis.expected_on_payment.count == 2

    @pytest.mark.asyncio
    async def test_empty_pipeline(self, session, settings):
        kpis = await ForecastProjector(session, settings).treasury_kpis()

        assert kpis.expected_total.value == Decimal("0")
        assert kpis.expected_total.count == 0
