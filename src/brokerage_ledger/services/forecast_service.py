"""Month-by-month cash forecast.

Opening balance is the sum of current account balances, which already
include every realized flow. Each month then adds expected income and
subtracts only obligations that are not yet paid:

    closing = opening + expected_income - planned_expenses

Payroll payouts are left out of expenses because deal net profit is already
net of commissions. Actual expenses are reported for information only and
never enter the balance chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.config import Settings, get_settings
from brokerage_ledger.models import Account, CashFlow, CashFlowStatus, CashFlowType, Deal, DealStatus
from brokerage_ledger.models.enums import (
    AWAITING_PAYMENT_STATUSES,
    OPEN_DEAL_STATUSES,
    PAYROLL_PAYOUT_CATEGORIES,
)
from brokerage_ledger.money import ZERO, add_months, in_month, month_key, parse_month_key, to_decimal, total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonthlyForecast:
    month_key: str
    month_start: date
    opening_balance: Decimal
    expected_income: Decimal
    planned_expenses: Decimal
    actual_expenses: Decimal
    closing_balance: Decimal

    @property
    def status(self) -> str:
        return "critical" if self.closing_balance < ZERO else "positive"


@dataclass(frozen=True)
class ExpenseItem:
    """One obligation behind a month's planned expenses."""

    cash_flow_id: UUID
    amount: Decimal
    category: str
    description: str | None
    planned_date: date
    source: str  # "recurring" or "planned"


@dataclass(frozen=True)
class ExpenseDetails:
    month_key: str
    items: list[ExpenseItem] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return total(item.amount for item in self.items)


@dataclass(frozen=True)
class KpiFigure:
    value: Decimal
    count: int


@dataclass(frozen=True)
class TreasuryKpis:
    expected_total: KpiFigure
    expected_deposits: KpiFigure
    expected_on_payment: KpiFigure


# ============================================================================
# Pure month rules
# ============================================================================


def planned_expense_items(flows: Iterable[CashFlow], first_day: date) -> list[ExpenseItem]:
    """Unpaid obligations of the month starting at `first_day`.

    One-off PLANNED expenses dated in the month, plus every recurring
    expense whose category has no PAID expense in the month yet.
    """
    flows = [
        f
        for f in flows
        if f.flow_type == CashFlowType.EXPENSE and f.category not in PAYROLL_PAYOUT_CATEGORIES
    ]
    paid_categories = {
        f.category
        for f in flows
        if f.status == CashFlowStatus.PAID and in_month(f.actual_date, first_day)
    }

    recurring = [
        _item(f, "recurring")
        for f in sorted(flows, key=lambda f: f.category)
        if f.is_recurring and f.category not in paid_categories
    ]
    planned = [
        _item(f, "planned")
        for f in sorted(flows, key=lambda f: f.planned_date)
        if not f.is_recurring
        and f.status == CashFlowStatus.PLANNED
        and in_month(f.planned_date, first_day)
    ]
    return recurring + planned


def _item(flow: CashFlow, source: str) -> ExpenseItem:
    return ExpenseItem(
        cash_flow_id=flow.cash_flow_id,
        amount=to_decimal(flow.amount),
        category=flow.category,
        description=flow.description,
        planned_date=flow.planned_date,
        source=source,
    )


def actual_expenses(flows: Iterable[CashFlow], first_day: date) -> Decimal:
    return total(
        f.amount
        for f in flows
        if f.flow_type == CashFlowType.EXPENSE
        and f.status == CashFlowStatus.PAID
        and f.category not in PAYROLL_PAYOUT_CATEGORIES
        and in_month(f.actual_date, first_day)
    )


def planned_income(flows: Iterable[CashFlow], first_day: date) -> Decimal:
    """Manual INCOME rows not yet realized, planned in the month."""
    return total(
        f.amount
        for f in flows
        if f.flow_type == CashFlowType.INCOME
        and f.actual_date is None
        and in_month(f.planned_date, first_day)
    )


def forecast_window(
    months_ahead: int,
    year: int | None,
    today: date,
) -> tuple[list[date], bool]:
    """First days of the months to project and whether the run is historical.

    No year, or the current or a future year: `months_ahead` months starting
    this month (January for a future year). A past year: its twelve months.
    """
    if year is not None and year < today.year:
        return [date(year, m, 1) for m in range(1, 13)], True

    if year is None or year == today.year:
        start = today.replace(day=1)
    else:
        start = date(year, 1, 1)
    return [add_months(start, i) for i in range(months_ahead)], False


def build_forecast(
    opening_balance: Decimal,
    months: Sequence[date],
    flows: Sequence[CashFlow],
    deals: Sequence[Deal],
    historical: bool,
) -> list[MonthlyForecast]:
    """Chain monthly balances from the opening balance."""
    open_pipeline = total(d.net_profit for d in deals if d.status in OPEN_DEAL_STATUSES)

    forecast = []
    opening = to_decimal(opening_balance)
    for index, first_day in enumerate(months):
        if historical:
            income = total(
                d.net_profit
                for d in deals
                if d.status == DealStatus.CLOSED and in_month(d.deal_date, first_day)
            )
        else:
            income = planned_income(flows, first_day)
            if index == 0:
                income += open_pipeline

        expenses = total(item.amount for item in planned_expense_items(flows, first_day))
        closing = opening + income - expenses
        forecast.append(
            MonthlyForecast(
                month_key=month_key(first_day),
                month_start=first_day,
                opening_balance=opening,
                expected_income=income,
                planned_expenses=expenses,
                actual_expenses=actual_expenses(flows, first_day),
                closing_balance=closing,
            )
        )
        opening = closing
    return forecast


# ============================================================================
# Projector
# ============================================================================


class ForecastProjector:
    """Read-only projections over accounts, cash flows and the deal pipeline."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def project(
        self,
        months_ahead: int | None = None,
        year: int | None = None,
        today: date | None = None,
    ) -> list[MonthlyForecast]:
        today = today or date.today()
        months, historical = forecast_window(
            months_ahead if months_ahead is not None else self.settings.forecast_months,
            year,
            today,
        )
        if not months:
            return []

        balance = await self.session.execute(select(func.coalesce(func.sum(Account.balance), 0)))
        flows = await self._cash_flows()
        deals = (
            await self.session.execute(select(Deal).where(Deal.status != DealStatus.CANCELLED))
        ).scalars().all()

        forecast = build_forecast(to_decimal(balance.scalar_one()), months, flows, deals, historical)
        logger.info(
            "Projected %d month(s) from %s (%s)",
            len(forecast),
            forecast[0].month_key,
            "historical" if historical else "forward",
        )
        return forecast

    async def expense_details(self, key: str) -> ExpenseDetails:
        """Itemized obligations behind one month's planned expenses."""
        return ExpenseDetails(
            month_key=key,
            items=planned_expense_items(await self._cash_flows(), parse_month_key(key)),
        )

    async def treasury_kpis(self) -> TreasuryKpis:
        """Expected income from the open deal pipeline."""
        result = await self.session.execute(
            select(Deal.status, func.coalesce(func.sum(Deal.net_profit), 0), func.count())
            .where(Deal.status.in_(OPEN_DEAL_STATUSES))
            .group_by(Deal.status)
        )
        by_status = {status: (to_decimal(value), count) for status, value, count in result.all()}

        def figure(statuses: Iterable[DealStatus]) -> KpiFigure:
            rows = [by_status[s] for s in statuses if s in by_status]
            return KpiFigure(value=total(v for v, _ in rows), count=sum(c for _, c in rows))

        return TreasuryKpis(
            expected_total=figure(OPEN_DEAL_STATUSES),
            expected_deposits=figure([DealStatus.DEPOSIT]),
            expected_on_payment=figure(AWAITING_PAYMENT_STATUSES),
        )

    async def _cash_flows(self) -> list[CashFlow]:
        result = await self.session.execute(select(CashFlow))
        return list(result.scalars().all())
