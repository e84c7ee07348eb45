"""Revenue and commission rollups for the presentation layer.

Rollups read the same stored, normalized deal fields the ledger writes, so
report totals reconcile with the ledger. Cancelled deals are excluded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.models import Deal, DealStatus, Employee
from brokerage_ledger.money import HUNDRED, ZERO, month_key, to_decimal


@dataclass
class Rollup:
    """Revenue and commission totals for one bucket.

    Booking revenue is recognized on the deposit date, deal revenue and
    everything derived from it on the deal date.
    """

    key: str
    label: str = ""
    booking_revenue: Decimal = ZERO
    deal_revenue: Decimal = ZERO
    net_profit: Decimal = ZERO
    agent_commission: Decimal = ZERO
    rop_commission: Decimal = ZERO
    deals_booked: int = 0
    deals_closed: int = 0

    @property
    def commission(self) -> Decimal:
        return self.agent_commission + self.rop_commission

    @property
    def margin(self) -> Decimal:
        """Net profit as a percentage of deal revenue."""
        if self.deal_revenue == ZERO:
            return ZERO
        return self.net_profit / self.deal_revenue * HUNDRED

    def book(self, deal: Deal) -> None:
        self.booking_revenue += to_decimal(deal.commission)
        self.deals_booked += 1

    def recognize(self, deal: Deal, agent: bool = True, rop: bool = True) -> None:
        self.deal_revenue += to_decimal(deal.commission)
        self.net_profit += to_decimal(deal.net_profit)
        if agent:
            self.agent_commission += to_decimal(deal.agent_commission)
        if rop:
            self.rop_commission += to_decimal(deal.rop_commission)
        self.deals_closed += 1


def _in_year(d: date | None, year: int) -> bool:
    return d is not None and d.year == year


def monthly_rollup(deals: Sequence[Deal], year: int) -> list[Rollup]:
    """Twelve monthly buckets for `year`."""
    buckets = {month_key(date(year, m, 1)): Rollup(key=month_key(date(year, m, 1))) for m in range(1, 13)}
    for deal in deals:
        if deal.status == DealStatus.CANCELLED:
            continue
        if _in_year(deal.deposit_date, year):
            buckets[month_key(deal.deposit_date)].book(deal)
        if _in_year(deal.deal_date, year):
            buckets[month_key(deal.deal_date)].recognize(deal)
    return list(buckets.values())


def employee_rollup(
    deals: Sequence[Deal],
    employees: Sequence[Employee],
    year: int,
) -> list[Rollup]:
    """One bucket per employee who booked, closed or managed a deal in `year`.

    An agent is credited with booking revenue, deal revenue and net profit
    of their deals; a manager only with the manager commission of deals
    they supervise.
    """
    names = {e.employee_id: e.name for e in employees}
    buckets: dict[UUID, Rollup] = {}

    def bucket(employee_id: UUID) -> Rollup:
        if employee_id not in buckets:
            buckets[employee_id] = Rollup(key=str(employee_id), label=names.get(employee_id, ""))
        return buckets[employee_id]

    for deal in deals:
        if deal.status == DealStatus.CANCELLED:
            continue
        if _in_year(deal.deposit_date, year):
            bucket(deal.agent_id).book(deal)
        if _in_year(deal.deal_date, year):
            bucket(deal.agent_id).recognize(deal, rop=False)
            if deal.rop_id is not None:
                bucket(deal.rop_id).rop_commission += to_decimal(deal.rop_commission)

    return sorted(buckets.values(), key=lambda r: r.net_profit, reverse=True)


class ReportService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def monthly_rollup(self, year: int) -> list[Rollup]:
        return monthly_rollup(await self._deals(year), year)

    async def employee_rollup(self, year: int) -> list[Rollup]:
        employees = (await self.session.execute(select(Employee))).scalars().all()
        return employee_rollup(await self._deals(year), employees, year)

    async def _deals(self, year: int) -> list[Deal]:
        start, end = date(year, 1, 1), date(year, 12, 31)
        result = await self.session.execute(
            select(Deal).where(
                Deal.status != DealStatus.CANCELLED,
                or_(
                    Deal.deposit_date.between(start, end),
                    Deal.deal_date.between(start, end),
                ),
            )
        )
        return list(result.scalars().all())
