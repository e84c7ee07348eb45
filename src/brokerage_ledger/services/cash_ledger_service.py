"""Cash ledger reconciliation.

Every mutation of a cash flow is paired with the balance adjustments of the
accounts it touches. The delta math lives in pure functions so the create,
edit, delete and payment paths all share it:

    plan_balance_adjustments(before, after) -> {account_id: delta}

`before` is the pre-image (None on create), `after` the post-image (None on
delete). A flow only counts toward its account while `actual_date` is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.config import Settings, get_settings
from brokerage_ledger.models import (
    Account,
    CashFlow,
    CashFlowStatus,
    CashFlowType,
    PayrollPayment,
)
from brokerage_ledger.money import ZERO, to_decimal
from brokerage_ledger.schemas import AccountCreate, CashFlowCreate, CashFlowUpdate
from brokerage_ledger.services.errors import (
    AccountNotFoundError,
    CashFlowNotFoundError,
    InvalidAmountError,
    MissingAccountError,
    PayoutFlowEditError,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Pure delta math
# ============================================================================


@dataclass(frozen=True)
class FlowImage:
    """The fields of a cash flow that affect account balances."""

    flow_type: CashFlowType
    amount: Decimal
    actual_date: date | None
    account_id: UUID | None

    @classmethod
    def of(cls, flow: CashFlow) -> FlowImage:
        return cls(
            flow_type=flow.flow_type,
            amount=to_decimal(flow.amount),
            actual_date=flow.actual_date,
            account_id=flow.account_id,
        )


def signed_amount(flow_type: CashFlowType, amount: Decimal) -> Decimal:
    """+amount for income, -amount for expense."""
    amount = to_decimal(amount)
    return amount if flow_type == CashFlowType.INCOME else -amount


def realized_delta(image: FlowImage | None) -> Decimal:
    """Contribution of a flow to its account balance."""
    if image is None or image.actual_date is None or image.account_id is None:
        return ZERO
    return signed_amount(image.flow_type, image.amount)


def plan_balance_adjustments(
    before: FlowImage | None,
    after: FlowImage | None,
) -> dict[UUID, Decimal]:
    """Balance deltas that move a flow from `before` to `after`.

    Same account: one entry with new - old. Account changed: the old delta
    is reversed on the old account and the new delta applied on the new one.
    Zero deltas are dropped.
    """
    adjustments: dict[UUID, Decimal] = {}

    old_delta = realized_delta(before)
    if old_delta != ZERO:
        adjustments[before.account_id] = adjustments.get(before.account_id, ZERO) - old_delta

    new_delta = realized_delta(after)
    if new_delta != ZERO:
        adjustments[after.account_id] = adjustments.get(after.account_id, ZERO) + new_delta

    return {account_id: delta for account_id, delta in adjustments.items() if delta != ZERO}


def settle_flow_status(
    status: CashFlowStatus,
    actual_date: date | None,
    planned_date: date,
) -> tuple[CashFlowStatus, date | None]:
    """PAID always carries an actual date, PLANNED never does."""
    if status == CashFlowStatus.PAID:
        return status, actual_date or planned_date
    return status, None


@dataclass(frozen=True)
class BalanceCheck:
    """Audit of one account's materialized balance."""

    account_id: UUID
    name: str
    balance: Decimal
    opening_balance: Decimal
    realized_total: Decimal

    @property
    def expected(self) -> Decimal:
        return self.opening_balance + self.realized_total

    @property
    def drift(self) -> Decimal:
        return self.balance - self.expected

    def is_consistent(self, epsilon: Decimal = Decimal("0.00001")) -> bool:
        return abs(self.drift) <= epsilon


# ============================================================================
# Reconciler
# ============================================================================


class CashLedgerReconciler:
    """Creates, edits and deletes cash flows together with account balances.

    All writes go through the caller's session; the caller's unit of work is
    the transaction. Balances change only by atomic SQL increments.
    """

    # Columns that cannot be cleared; an explicit null on update is ignored
    _REQUIRED_FIELDS = frozenset(
        {"flow_type", "amount", "category", "status", "planned_date", "is_recurring"}
    )

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    # ----- Accounts -----

    async def create_account(self, data: AccountCreate) -> Account:
        """Open an account; the seed is recorded as the opening balance."""
        seed = to_decimal(data.balance)
        account = Account(
            name=data.name,
            account_type=data.account_type,
            balance=seed,
            opening_balance=seed,
        )
        self.session.add(account)
        await self.session.flush()
        logger.info("Opened account %s (%s) with balance %s", account.account_id, account.name, seed)
        return account

    async def get_account(self, account_id: UUID) -> Account:
        account = await self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def list_accounts(self) -> list[Account]:
        result = await self.session.execute(select(Account).order_by(Account.name))
        return list(result.scalars().all())

    async def total_balance(self) -> Decimal:
        """Sum of all materialized account balances."""
        result = await self.session.execute(select(func.coalesce(func.sum(Account.balance), 0)))
        return to_decimal(result.scalar_one())

    async def reseed_account(self, account_id: UUID, balance: Decimal) -> Account:
        """Manually set an account balance.

        The opening balance moves by the same difference, so the balance
        stays equal to opening balance plus realized flows.
        """
        result = await self.session.execute(
            select(Account).where(Account.account_id == account_id).with_for_update()
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(account_id)

        difference = to_decimal(balance) - to_decimal(account.balance)
        if difference != ZERO:
            await self.session.execute(
                update(Account)
                .where(Account.account_id == account_id)
                .values(
                    balance=Account.balance + difference,
                    opening_balance=Account.opening_balance + difference,
                )
            )
            logger.warning("Account %s reseeded by %s", account_id, difference)
        return account

    async def verify_balances(self) -> list[BalanceCheck]:
        """Compare every balance to opening balance plus realized flows."""
        totals: dict[UUID, Decimal] = {}
        result = await self.session.execute(
            select(CashFlow.account_id, CashFlow.flow_type, func.sum(CashFlow.amount))
            .where(CashFlow.actual_date.is_not(None), CashFlow.account_id.is_not(None))
            .group_by(CashFlow.account_id, CashFlow.flow_type)
        )
        for account_id, flow_type, amount in result.all():
            totals[account_id] = totals.get(account_id, ZERO) + signed_amount(flow_type, amount)

        checks = []
        for account in await self.list_accounts():
            check = BalanceCheck(
                account_id=account.account_id,
                name=account.name,
                balance=to_decimal(account.balance),
                opening_balance=to_decimal(account.opening_balance),
                realized_total=totals.get(account.account_id, ZERO),
            )
            if not check.is_consistent(self.settings.payment_epsilon):
                logger.warning("Account %s drifted by %s", account.account_id, check.drift)
            checks.append(check)
        return checks

    # ----- Cash flows -----

    async def get_cash_flow(self, cash_flow_id: UUID) -> CashFlow:
        flow = await self.session.get(CashFlow, cash_flow_id)
        if flow is None:
            raise CashFlowNotFoundError(cash_flow_id)
        return flow

    async def list_cash_flows(
        self,
        start: date | None = None,
        end: date | None = None,
        account_id: UUID | None = None,
        status: CashFlowStatus | None = None,
    ) -> list[CashFlow]:
        """Cash flows whose planned date falls in [start, end]."""
        query = select(CashFlow)
        if start is not None:
            query = query.where(CashFlow.planned_date >= start)
        if end is not None:
            query = query.where(CashFlow.planned_date <= end)
        if account_id is not None:
            query = query.where(CashFlow.account_id == account_id)
        if status is not None:
            query = query.where(CashFlow.status == status)
        result = await self.session.execute(query.order_by(CashFlow.planned_date))
        return list(result.scalars().all())

    async def create_cash_flow(self, data: CashFlowCreate) -> CashFlow:
        """Insert a cash flow and post its delta, if realized."""
        planned_date = data.planned_date or data.actual_date or date.today()
        status = data.status
        if status is None:
            status = CashFlowStatus.PAID if data.actual_date else CashFlowStatus.PLANNED
        status, actual_date = settle_flow_status(status, data.actual_date, planned_date)

        amount = to_decimal(data.amount)
        self._validate(status, amount, data.account_id)

        after = FlowImage(data.flow_type, amount, actual_date, data.account_id)
        adjustments = plan_balance_adjustments(None, after)
        await self._require_accounts(adjustments.keys() | _account_set(data.account_id))

        flow = CashFlow(
            flow_type=data.flow_type,
            amount=amount,
            category=data.category,
            status=status,
            planned_date=planned_date,
            actual_date=actual_date,
            account_id=data.account_id,
            is_recurring=data.is_recurring and data.flow_type == CashFlowType.EXPENSE,
            description=data.description,
        )
        self.session.add(flow)
        await self.session.flush()
        await self._apply(adjustments)

        logger.info(
            "Created %s %s cash flow %s for %s",
            status.value,
            data.flow_type.value,
            flow.cash_flow_id,
            amount,
        )
        return flow

    async def update_cash_flow(self, cash_flow_id: UUID, data: CashFlowUpdate) -> CashFlow:
        """Apply a partial update and move the balance delta accordingly."""
        flow = await self.get_cash_flow(cash_flow_id)
        before = FlowImage.of(flow)

        changes = {
            field: value
            for field, value in data.changes().items()
            if value is not None or field not in self._REQUIRED_FIELDS
        }

        flow_type = changes.get("flow_type", flow.flow_type)
        amount = to_decimal(changes.get("amount", flow.amount))
        planned_date = changes.get("planned_date", flow.planned_date)
        account_id = changes.get("account_id", flow.account_id)
        actual_date = changes.get("actual_date", flow.actual_date)

        if "status" in changes:
            status = changes["status"]
        elif "actual_date" in changes:
            status = CashFlowStatus.PAID if actual_date else CashFlowStatus.PLANNED
        else:
            status = flow.status
        status, actual_date = settle_flow_status(status, actual_date, planned_date)

        self._validate(status, amount, account_id)
        await self._check_payout_link(flow, flow_type, amount, account_id)

        after = FlowImage(flow_type, amount, actual_date, account_id)
        adjustments = plan_balance_adjustments(before, after)
        await self._require_accounts(adjustments.keys() | _account_set(account_id))

        flow.flow_type = flow_type
        flow.amount = amount
        flow.status = status
        flow.planned_date = planned_date
        flow.actual_date = actual_date
        flow.account_id = account_id
        if "category" in changes:
            flow.category = changes["category"]
        if "description" in changes:
            flow.description = changes["description"]
        is_recurring = changes.get("is_recurring", flow.is_recurring)
        flow.is_recurring = bool(is_recurring) and flow_type == CashFlowType.EXPENSE

        await self.session.flush()
        await self._apply(adjustments)

        logger.info("Updated cash flow %s, adjustments %s", cash_flow_id, adjustments or "none")
        return flow

    async def delete_cash_flow(self, cash_flow_id: UUID) -> None:
        """Reverse the flow's delta, unlink any payout payment, delete the row."""
        flow = await self.get_cash_flow(cash_flow_id)
        adjustments = plan_balance_adjustments(FlowImage.of(flow), None)
        await self._require_accounts(adjustments.keys())

        await self._apply(adjustments)
        await self.session.execute(
            update(PayrollPayment)
            .where(PayrollPayment.cash_flow_id == cash_flow_id)
            .values(cash_flow_id=None)
        )
        await self.session.delete(flow)
        await self.session.flush()

        logger.info("Deleted cash flow %s, adjustments %s", cash_flow_id, adjustments or "none")

    # ----- Internals -----

    def _validate(self, status: CashFlowStatus, amount: Decimal, account_id: UUID | None) -> None:
        if amount < ZERO:
            raise InvalidAmountError(amount, reason="amount must not be negative")
        if status == CashFlowStatus.PAID and account_id is None:
            raise MissingAccountError()

    async def _check_payout_link(
        self,
        flow: CashFlow,
        flow_type: CashFlowType,
        amount: Decimal,
        account_id: UUID | None,
    ) -> None:
        """Reject edits that would split a payout flow from its payment."""
        changed = [
            name
            for name, old, new in (
                ("flow_type", flow.flow_type, flow_type),
                ("amount", to_decimal(flow.amount), amount),
                ("account_id", flow.account_id, account_id),
            )
            if old != new
        ]
        if not changed:
            return
        linked = await self.session.execute(
            select(PayrollPayment.payment_id)
            .where(PayrollPayment.cash_flow_id == flow.cash_flow_id)
            .limit(1)
        )
        if linked.scalar_one_or_none() is not None:
            raise PayoutFlowEditError(flow.cash_flow_id, changed)

    async def _require_accounts(self, account_ids) -> None:
        for account_id in account_ids:
            if await self.session.get(Account, account_id) is None:
                raise AccountNotFoundError(account_id)

    async def _apply(self, adjustments: dict[UUID, Decimal]) -> None:
        for account_id, delta in adjustments.items():
            await self.adjust_balance(account_id, delta)

    async def adjust_balance(self, account_id: UUID, delta: Decimal) -> None:
        """Atomically add `delta` to an account balance."""
        result = await self.session.execute(
            update(Account)
            .where(Account.account_id == account_id)
            .values(balance=Account.balance + delta)
        )
        if result.rowcount == 0:
            raise AccountNotFoundError(account_id)
        logger.info("Account %s balance adjusted by %s", account_id, delta)


def _account_set(account_id: UUID | None) -> set[UUID]:
    return {account_id} if account_id is not None else set()
