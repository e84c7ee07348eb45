"""Commission rate resolution over an employee's rate history."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.calculators.types import AppliedRates
from brokerage_ledger.models import CommissionRate, RateType
from brokerage_ledger.money import ZERO, to_decimal

if TYPE_CHECKING:
    from brokerage_ledger.models import Employee


def pick_effective_rate(
    rates: Iterable[CommissionRate],
    rate_type: RateType,
    as_of_date: date,
) -> CommissionRate | None:
    """Latest rate of `rate_type` with effective_date <= as_of_date.

    Ties on effective_date go to the row created last.
    """
    best: CommissionRate | None = None
    for rate in rates:
        if rate.rate_type != rate_type or not rate.is_effective_on(as_of_date):
            continue
        if best is None or _sort_key(rate) > _sort_key(best):
            best = rate
    return best


def _sort_key(rate: CommissionRate) -> tuple:
    return (rate.effective_date, rate.created_at is not None, rate.created_at or 0)


def choose_rate(*candidates: Decimal | float | None) -> Decimal:
    """First candidate that is not None, else zero.

    Callers pass candidates in priority order: explicit override, resolved
    historical rate, employee base rate.
    """
    for candidate in candidates:
        if candidate is not None:
            return to_decimal(candidate)
    return ZERO


class RateResolver:
    """Resolves commission percentages from the rate history.

    Rate selection priority:
    1. Explicit override supplied by the caller
    2. Latest CommissionRate row with effective_date <= as_of_date
    3. Employee base rate for the role
    4. Zero
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_rate(
        self,
        employee_id: UUID,
        rate_type: RateType,
        as_of_date: date,
    ) -> Decimal | None:
        """Historical rate in effect on `as_of_date`, or None if there is none."""
        result = await self.session.execute(
            select(CommissionRate).where(
                CommissionRate.employee_id == employee_id,
                CommissionRate.rate_type == rate_type,
                CommissionRate.effective_date <= as_of_date,
            )
        )
        latest = pick_effective_rate(result.scalars().all(), rate_type, as_of_date)
        return latest.rate if latest is not None else None

    async def resolve_applied_rate(
        self,
        employee: Employee | None,
        rate_type: RateType,
        as_of_date: date,
        override: Decimal | None = None,
    ) -> Decimal:
        """Run the fallback pipeline for one role.

        A missing employee always yields zero.
        """
        if employee is None:
            return ZERO
        if override is not None:
            return to_decimal(override)

        historical = await self.resolve_rate(employee.employee_id, rate_type, as_of_date)
        return choose_rate(historical, employee.base_rate(rate_type))

    async def resolve_deal_rates(
        self,
        agent: Employee,
        rop: Employee | None,
        as_of_date: date,
        agent_override: Decimal | None = None,
        rop_override: Decimal | None = None,
    ) -> AppliedRates:
        """Resolve both commission rates for a deal booked on `as_of_date`."""
        return AppliedRates(
            agent_rate=await self.resolve_applied_rate(
                agent, RateType.AGENT, as_of_date, agent_override
            ),
            rop_rate=await self.resolve_applied_rate(rop, RateType.ROP, as_of_date, rop_override),
        )
