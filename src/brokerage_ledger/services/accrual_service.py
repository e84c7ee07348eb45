"""Payroll accrual engine.

Accruals are derived from a deal's closing state: one row per (deal,
employee, role), upserted whenever a closed deal is saved. The engine never
deletes accruals on its own. When a closed deal is reassigned the stale row
becomes an orphan, which is reported by `find_orphaned_accruals()` and only
removed through the explicit, confirmed `delete_orphaned_accruals()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.models import Deal, DealStatus, PayrollAccrual, PayrollPayment, RateType
from brokerage_ledger.money import ZERO, to_decimal
from brokerage_ledger.services.errors import DealNotFoundError, OrphanDeletionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccrualSummary:
    """An accrual with its payment progress."""

    accrual_id: UUID
    deal_id: UUID
    employee_id: UUID
    accrual_type: RateType
    amount: Decimal
    paid: Decimal
    accrued_at: date

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.amount - self.paid)

    @property
    def status(self) -> str:
        if self.paid <= ZERO:
            return "unpaid"
        if self.remaining > ZERO:
            return "partially"
        return "paid"


@dataclass(frozen=True)
class OrphanedAccrual:
    """An accrual whose employee no longer holds the role on its deal."""

    accrual_id: UUID
    deal_id: UUID
    accrual_type: RateType
    employee_id: UUID
    current_assignee_id: UUID | None
    amount: Decimal
    paid: Decimal
    client: str = ""

    @property
    def remaining(self) -> Decimal:
        return self.amount - self.paid


@dataclass
class OrphanCleanupResult:
    deleted_accruals: int = 0
    deleted_payments: int = 0
    unlinked_cash_flows: list[UUID] = field(default_factory=list)


class PayrollAccrualEngine:
    """Keeps payroll accruals in step with closed deals."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def ensure_accruals(self, deal_id: UUID, today: date | None = None) -> list[PayrollAccrual]:
        """Upsert the AGENT and ROP accruals of a closed deal.

        No-op unless the deal is CLOSED. Roles with no assignee or a
        non-positive commission are skipped; existing rows are never deleted
        here. Running this repeatedly on an unchanged deal converges.
        """
        deal = await self.session.get(Deal, deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        if deal.status != DealStatus.CLOSED:
            return []

        first_accrued_at = today or date.today()
        roles = (
            (RateType.AGENT, deal.agent_id, deal.agent_commission),
            (RateType.ROP, deal.rop_id, deal.rop_commission),
        )

        accruals = []
        for accrual_type, employee_id, commission in roles:
            amount = to_decimal(commission)
            if employee_id is None or amount <= ZERO:
                continue
            accruals.append(
                await self._upsert(
                    deal.deal_id,
                    employee_id,
                    accrual_type,
                    amount,
                    deal.deal_date,
                    first_accrued_at,
                )
            )
        return accruals

    async def _upsert(
        self,
        deal_id: UUID,
        employee_id: UUID,
        accrual_type: RateType,
        amount: Decimal,
        deal_date: date | None,
        first_accrued_at: date,
    ) -> PayrollAccrual:
        """Insert or refresh one accrual.

        The accrual is dated on the deal date. Without one, a new row is dated
        `first_accrued_at` and an existing row keeps its date.
        """
        result = await self.session.execute(
            select(PayrollAccrual).where(
                PayrollAccrual.deal_id == deal_id,
                PayrollAccrual.employee_id == employee_id,
                PayrollAccrual.accrual_type == accrual_type,
            )
        )
        accrual = result.scalar_one_or_none()

        if accrual is None:
            accrued_at = deal_date or first_accrued_at
            accrual = PayrollAccrual(
                deal_id=deal_id,
                employee_id=employee_id,
                accrual_type=accrual_type,
                amount=amount,
                accrued_at=accrued_at,
            )
            self.session.add(accrual)
            logger.info(
                "Accrued %s %s for employee %s on deal %s",
                amount,
                accrual_type.value,
                employee_id,
                deal_id,
            )
        else:
            accrued_at = deal_date or accrual.accrued_at
            if to_decimal(accrual.amount) != amount or accrual.accrued_at != accrued_at:
                logger.info(
                    "Accrual %s amount %s -> %s",
                    accrual.accrual_id,
                    accrual.amount,
                    amount,
                )
                accrual.amount = amount
                accrual.accrued_at = accrued_at

        await self.session.flush()
        return accrual

    async def paid_totals(self, accrual_ids: Iterable[UUID] | None = None) -> dict[UUID, Decimal]:
        """Sum of payments per accrual."""
        query = select(PayrollPayment.accrual_id, func.sum(PayrollPayment.amount)).group_by(
            PayrollPayment.accrual_id
        )
        if accrual_ids is not None:
            query = query.where(PayrollPayment.accrual_id.in_(list(accrual_ids)))
        result = await self.session.execute(query)
        return {accrual_id: to_decimal(paid) for accrual_id, paid in result.all()}

    async def list_accruals(
        self,
        employee_id: UUID | None = None,
        accrual_type: RateType | None = None,
        status: str | None = None,
    ) -> list[AccrualSummary]:
        """Accruals with paid/remaining, newest first.

        `status` filters on the derived payment status: unpaid, partially
        or paid.
        """
        query = select(PayrollAccrual)
        if employee_id is not None:
            query = query.where(PayrollAccrual.employee_id == employee_id)
        if accrual_type is not None:
            query = query.where(PayrollAccrual.accrual_type == accrual_type)
        result = await self.session.execute(query.order_by(PayrollAccrual.accrued_at.desc()))
        accruals = list(result.scalars().all())

        paid = await self.paid_totals(a.accrual_id for a in accruals)
        summaries = [
            AccrualSummary(
                accrual_id=a.accrual_id,
                deal_id=a.deal_id,
                employee_id=a.employee_id,
                accrual_type=a.accrual_type,
                amount=to_decimal(a.amount),
                paid=paid.get(a.accrual_id, ZERO),
                accrued_at=a.accrued_at,
            )
            for a in accruals
        ]
        if status is not None:
            summaries = [s for s in summaries if s.status == status.lower()]
        return summaries

    # ----- Orphans -----

    async def find_orphaned_accruals(self) -> list[OrphanedAccrual]:
        """Accruals whose employee is no longer the deal's assignee for the role."""
        result = await self.session.execute(
            select(PayrollAccrual, Deal).join(Deal, Deal.deal_id == PayrollAccrual.deal_id)
        )
        rows = [
            (accrual, deal)
            for accrual, deal in result.all()
            if accrual.employee_id != deal.assignee_for(accrual.accrual_type)
        ]
        paid = await self.paid_totals(accrual.accrual_id for accrual, _ in rows)

        return [
            OrphanedAccrual(
                accrual_id=accrual.accrual_id,
                deal_id=deal.deal_id,
                accrual_type=accrual.accrual_type,
                employee_id=accrual.employee_id,
                current_assignee_id=deal.assignee_for(accrual.accrual_type),
                amount=to_decimal(accrual.amount),
                paid=paid.get(accrual.accrual_id, ZERO),
                client=deal.client,
            )
            for accrual, deal in rows
        ]

    async def delete_orphaned_accruals(
        self,
        accrual_ids: Iterable[UUID],
        confirm: bool = False,
    ) -> OrphanCleanupResult:
        """Delete orphaned accruals and their payments.

        Requires `confirm=True`. Every id must still be orphaned at call
        time. Payout cash flows stay in the ledger (the money moved); they
        are only unlinked from the deleted payments.

        Raises:
            OrphanDeletionError: If not confirmed or an id is not an orphan
        """
        targets = list(dict.fromkeys(accrual_ids))
        if not confirm:
            raise OrphanDeletionError("Orphan deletion must be explicitly confirmed")
        if not targets:
            return OrphanCleanupResult()

        orphan_ids = {o.accrual_id for o in await self.find_orphaned_accruals()}
        not_orphaned = set(targets) - orphan_ids
        if not_orphaned:
            raise OrphanDeletionError(
                f"{len(not_orphaned)} accrual(s) are not orphaned",
                accrual_ids=sorted(str(a) for a in not_orphaned),
            )

        payments = await self.session.execute(
            select(PayrollPayment.payment_id, PayrollPayment.cash_flow_id).where(
                PayrollPayment.accrual_id.in_(targets)
            )
        )
        payment_rows = payments.all()
        cleanup = OrphanCleanupResult(
            deleted_payments=len(payment_rows),
            unlinked_cash_flows=[cf for _, cf in payment_rows if cf is not None],
        )

        await self.session.execute(
            update(PayrollPayment)
            .where(PayrollPayment.accrual_id.in_(targets))
            .values(cash_flow_id=None)
        )
        await self.session.execute(
            delete(PayrollPayment).where(PayrollPayment.accrual_id.in_(targets))
        )
        result = await self.session.execute(
            delete(PayrollAccrual).where(PayrollAccrual.accrual_id.in_(targets))
        )
        cleanup.deleted_accruals = result.rowcount

        logger.warning(
            "Deleted %d orphaned accrual(s) and %d payment(s)",
            cleanup.deleted_accruals,
            cleanup.deleted_payments,
        )
        return cleanup
