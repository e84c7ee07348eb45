"""Payment allocation against payroll accruals."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.config import Settings, get_settings
from brokerage_ledger.models import (
    CashFlowStatus,
    CashFlowType,
    PayrollAccrual,
    PayrollPayment,
)
from brokerage_ledger.models.enums import payout_category
from brokerage_ledger.money import ZERO, to_decimal
from brokerage_ledger.schemas import CashFlowCreate, PaymentCreate
from brokerage_ledger.services.cash_ledger_service import CashLedgerReconciler
from brokerage_ledger.services.errors import (
    AccrualNotFoundError,
    AlreadyFullyPaidError,
    AmountExceedsRemainingError,
    InvalidAmountError,
)

logger = logging.getLogger(__name__)


class PaymentAllocator:
    """Pays out accruals.

    A payment is three writes on the caller's unit of work:
    1. A PAID EXPENSE cash flow in the payout category of the accrual type
    2. The matching decrement of the paying account's balance
    3. The PayrollPayment row linked to the accrual and the cash flow

    The accrual row is locked while the remaining amount is checked, so two
    concurrent payments cannot both pass the overpayment check.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.ledger = CashLedgerReconciler(session, self.settings)

    async def allocate_payment(
        self,
        accrual_id: UUID,
        account_id: UUID,
        amount: Decimal,
        paid_at: date | None = None,
        description: str | None = None,
    ) -> PayrollPayment:
        """Record a (possibly partial) payment of an accrual.

        Raises:
            InvalidAmountError: If amount is not positive
            AccrualNotFoundError: If the accrual does not exist
            AccountNotFoundError: If the account does not exist
            AlreadyFullyPaidError: If nothing remains to be paid
            AmountExceedsRemainingError: If amount is above what remains
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise InvalidAmountError(amount)

        result = await self.session.execute(
            select(PayrollAccrual).where(PayrollAccrual.accrual_id == accrual_id).with_for_update()
        )
        accrual = result.scalar_one_or_none()
        if accrual is None:
            raise AccrualNotFoundError(accrual_id)

        await self.ledger.get_account(account_id)

        remaining = to_decimal(accrual.amount) - await self.paid_to_date(accrual_id)
        if remaining <= ZERO:
            raise AlreadyFullyPaidError(accrual_id)
        if amount > remaining + self.settings.payment_epsilon:
            raise AmountExceedsRemainingError(accrual_id, amount, remaining)

        paid_at = paid_at or date.today()
        cash_flow = await self.ledger.create_cash_flow(
            CashFlowCreate(
                flow_type=CashFlowType.EXPENSE,
                amount=amount,
                category=payout_category(accrual.accrual_type),
                status=CashFlowStatus.PAID,
                planned_date=paid_at,
                actual_date=paid_at,
                account_id=account_id,
                description=description,
            )
        )

        payment = PayrollPayment(
            accrual_id=accrual_id,
            amount=amount,
            paid_at=paid_at,
            account_id=account_id,
            cash_flow_id=cash_flow.cash_flow_id,
            description=description,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(
            "Paid %s against accrual %s from account %s (remaining %s)",
            amount,
            accrual_id,
            account_id,
            remaining - amount,
        )
        return payment

    async def pay(self, data: PaymentCreate) -> PayrollPayment:
        """allocate_payment() for a PaymentCreate document."""
        return await self.allocate_payment(
            accrual_id=data.accrual_id,
            account_id=data.account_id,
            amount=data.amount,
            paid_at=data.paid_at,
            description=data.description,
        )

    async def paid_to_date(self, accrual_id: UUID) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PayrollPayment.amount), 0)).where(
                PayrollPayment.accrual_id == accrual_id
            )
        )
        return to_decimal(result.scalar_one())

    async def list_payments(self, accrual_id: UUID) -> list[PayrollPayment]:
        result = await self.session.execute(
            select(PayrollPayment)
            .where(PayrollPayment.accrual_id == accrual_id)
            .order_by(PayrollPayment.paid_at.desc())
        )
        return list(result.scalars().all())
