"""Deal reconciliation: derived commission fields and their side effects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.calculators import (
    AppliedRates,
    ExpenseBreakdown,
    RateResolver,
    WaterfallInput,
    normalize_expenses,
    run_waterfall,
)
from brokerage_ledger.config import Settings, get_settings
from brokerage_ledger.models import (
    Deal,
    DealStatus,
    Employee,
    PayrollAccrual,
    PayrollPayment,
    RateType,
)
from brokerage_ledger.money import ZERO, to_decimal
from brokerage_ledger.schemas import DealCreate, DealUpdate
from brokerage_ledger.services.accrual_service import PayrollAccrualEngine
from brokerage_ledger.services.errors import DealNotFoundError, UnknownEmployeeError

logger = logging.getLogger(__name__)

EXPENSE_FIELDS = (
    "broker_expense",
    "lawyer_expense",
    "referral_expense",
    "other_expense",
    "external_expenses",
)

# Changing any of these re-runs the waterfall on a non-manual deal
RECALC_TRIGGERS = frozenset(
    {
        "commission",
        "tax_rate",
        "agent_id",
        "rop_id",
        "deposit_date",
        "agent_rate_override",
        "rop_rate_override",
        *EXPENSE_FIELDS,
    }
)

DERIVED_FIELDS = ("agent_commission", "rop_commission", "net_profit")

# Numeric columns an explicit null resets to zero
_ZEROABLE_FIELDS = frozenset({"price", "commission", *EXPENSE_FIELDS})

# Columns an explicit null leaves untouched
_UNCLEARABLE_FIELDS = frozenset({"status", "deposit_date", "commissions_manual"})

_STORAGE_QUANTUM = Decimal("0.0001")


def expenses_of(deal: Deal) -> ExpenseBreakdown:
    """Normalized expense breakdown of a deal's stored fields."""
    return normalize_expenses(
        broker=deal.broker_expense,
        lawyer=deal.lawyer_expense,
        referral=deal.referral_expense,
        other=deal.other_expense,
        external=deal.external_expenses,
    )


def store_expenses(deal: Deal, expenses: ExpenseBreakdown) -> None:
    deal.broker_expense = expenses.broker
    deal.lawyer_expense = expenses.lawyer
    deal.referral_expense = expenses.referral
    deal.other_expense = expenses.other
    deal.external_expenses = expenses.external


def apply_waterfall(deal: Deal, rates: AppliedRates) -> None:
    """Normalize expenses, run the waterfall and store the derived fields."""
    expenses = expenses_of(deal)
    store_expenses(deal, expenses)

    result = run_waterfall(
        WaterfallInput(
            gross_commission=to_decimal(deal.commission),
            tax_rate=to_decimal(deal.tax_rate),
            expenses=expenses,
            agent_rate=rates.agent_rate,
            rop_rate=rates.rop_rate,
        )
    )
    deal.agent_rate_applied = rates.agent_rate
    deal.rop_rate_applied = rates.rop_rate
    deal.agent_commission = result.agent_commission
    deal.rop_commission = result.rop_commission
    deal.net_profit = result.net_profit


def _stored(value: Decimal | None) -> Decimal | None:
    """Value as the Numeric(18, 4) column keeps it."""
    if value is None:
        return None
    return to_decimal(value).quantize(_STORAGE_QUANTUM)


@dataclass
class RecalculationSummary:
    """Outcome of a batch recalculation."""

    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    rates_filled: int = 0
    legacy_expense_fallbacks: int = 0
    net_profit_before: Decimal = ZERO
    net_profit_after: Decimal = ZERO
    dry_run: bool = False

    @property
    def net_profit_delta(self) -> Decimal:
        return self.net_profit_after - self.net_profit_before


class DealReconciler:
    """Creates and updates deals, keeping derived commission fields current.

    The lifecycle is not enforced: any status may follow any other. Side
    effects on save:
    1. Non-manual deals: re-resolve rates and recompute the waterfall when a
       triggering field changed
    2. Manual deals: derived fields are taken verbatim from the caller
    3. Transition to CLOSED without a deal date sets it to today
    4. Payroll accruals are ensured (no-op unless CLOSED)
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.rate_resolver = RateResolver(session)
        self.accruals = PayrollAccrualEngine(session)

    async def get_deal(self, deal_id: UUID) -> Deal:
        deal = await self.session.get(Deal, deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    # ----- Create / update -----

    async def create_deal(self, data: DealCreate, today: date | None = None) -> Deal:
        """Create a deal.

        An omitted `rop_id` defaults to the agent's manager. A `rop_id` that
        does not resolve is stored as None and earns no commission.

        Raises:
            UnknownEmployeeError: If the agent does not exist
        """
        today = today or date.today()
        agent = await self._require_agent(data.agent_id)

        rop_id = data.rop_id if "rop_id" in data.model_fields_set else agent.manager_id
        rop = await self._resolve_rop(rop_id)

        deal = Deal(
            client=data.client,
            object_name=data.object_name,
            price=to_decimal(data.price),
            commission=to_decimal(data.commission),
            agent_id=agent.employee_id,
            rop_id=rop.employee_id if rop else None,
            status=data.status,
            deposit_date=data.deposit_date or today,
            deal_date=data.deal_date,
            planned_close_date=data.planned_close_date,
            notes=data.notes,
            tax_rate=(
                to_decimal(data.tax_rate)
                if data.tax_rate is not None
                else self.settings.default_tax_rate
            ),
            commissions_manual=data.commissions_manual,
        )
        store_expenses(
            deal,
            normalize_expenses(
                broker=data.broker_expense,
                lawyer=data.lawyer_expense,
                referral=data.referral_expense,
                other=data.other_expense,
                external=data.external_expenses,
            ),
        )
        if deal.status == DealStatus.CLOSED and deal.deal_date is None:
            deal.deal_date = today

        if deal.commissions_manual:
            deal.agent_rate_applied = data.agent_rate_override
            deal.rop_rate_applied = data.rop_rate_override
            for name in DERIVED_FIELDS:
                setattr(deal, name, getattr(data, name))
        else:
            rates = await self.rate_resolver.resolve_deal_rates(
                agent,
                rop,
                deal.deposit_date,
                agent_override=data.agent_rate_override,
                rop_override=data.rop_rate_override,
            )
            apply_waterfall(deal, rates)

        self.session.add(deal)
        await self.session.flush()
        logger.info(
            "Created deal %s (%s): commission %s, net profit %s",
            deal.deal_id,
            deal.status.value,
            deal.commission,
            deal.net_profit,
        )

        await self.accruals.ensure_accruals(deal.deal_id, today=today)
        return deal

    async def update_deal(self, deal_id: UUID, data: DealUpdate, today: date | None = None) -> Deal:
        """Apply a partial update.

        Absent fields are untouched; explicit nulls clear (numeric amounts
        clear to zero, the tax rate to the configured default).

        Raises:
            DealNotFoundError: If the deal does not exist
            UnknownEmployeeError: If a new agent does not exist
        """
        today = today or date.today()
        deal = await self.get_deal(deal_id)
        changes = data.changes()
        was_manual = deal.commissions_manual
        previous_status = deal.status

        # Validate references before any field is touched
        agent = None
        if "agent_id" in changes:
            agent = await self._require_agent(changes["agent_id"])
        if "rop_id" in changes:
            rop = await self._resolve_rop(changes["rop_id"])
            changes["rop_id"] = rop.employee_id if rop else None

        for name, value in changes.items():
            if name in DERIVED_FIELDS or name.endswith("_rate_override"):
                continue
            if value is None:
                if name in _UNCLEARABLE_FIELDS:
                    continue
                if name in _ZEROABLE_FIELDS:
                    value = ZERO
                elif name == "tax_rate":
                    value = self.settings.default_tax_rate
                elif name in ("client", "object_name"):
                    value = ""
            setattr(deal, name, value)
        if agent is not None:
            deal.agent_id = agent.employee_id

        store_expenses(deal, expenses_of(deal))

        if (
            deal.status == DealStatus.CLOSED
            and previous_status != DealStatus.CLOSED
            and deal.deal_date is None
        ):
            deal.deal_date = today

        if deal.commissions_manual:
            self._apply_manual_values(deal, changes)
        elif was_manual or RECALC_TRIGGERS.intersection(changes):
            rates = await self.rate_resolver.resolve_deal_rates(
                await self._require_agent(deal.agent_id),
                await self._resolve_rop(deal.rop_id),
                deal.deposit_date,
                agent_override=changes.get("agent_rate_override"),
                rop_override=changes.get("rop_rate_override"),
            )
            apply_waterfall(deal, rates)
            logger.info(
                "Recalculated deal %s: agent %s%%, rop %s%%, net profit %s",
                deal.deal_id,
                rates.agent_rate,
                rates.rop_rate,
                deal.net_profit,
            )

        await self.session.flush()
        await self.accruals.ensure_accruals(deal.deal_id, today=today)
        return deal

    def _apply_manual_values(self, deal: Deal, changes: dict[str, Any]) -> None:
        """Store operator-entered values; nothing is recomputed."""
        for name in DERIVED_FIELDS:
            if name in changes:
                setattr(deal, name, changes[name])
        if changes.get("agent_rate_override") is not None:
            deal.agent_rate_applied = changes["agent_rate_override"]
        if changes.get("rop_rate_override") is not None:
            deal.rop_rate_applied = changes["rop_rate_override"]

    # ----- Delete -----

    async def delete_deal(self, deal_id: UUID) -> None:
        """Delete a deal with its accruals and their payments.

        Payout cash flows stay in the ledger, unlinked, so account balances
        keep matching realized flows.
        """
        await self.get_deal(deal_id)
        accrual_ids = select(PayrollAccrual.accrual_id).where(PayrollAccrual.deal_id == deal_id)

        payments = await self.session.execute(
            delete(PayrollPayment)
            .where(PayrollPayment.accrual_id.in_(accrual_ids))
            .execution_options(synchronize_session="fetch")
        )
        accruals = await self.session.execute(
            delete(PayrollAccrual)
            .where(PayrollAccrual.deal_id == deal_id)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(
            delete(Deal)
            .where(Deal.deal_id == deal_id)
            .execution_options(synchronize_session="fetch")
        )
        logger.info(
            "Deleted deal %s with %d accrual(s) and %d payment(s)",
            deal_id,
            accruals.rowcount,
            payments.rowcount,
        )

    # ----- Batch recalculation -----

    async def recalculate_deals(
        self,
        dry_run: bool = False,
        exclude_cancelled: bool = False,
        limit: int | None = None,
    ) -> RecalculationSummary:
        """Recompute every non-manual deal from its stored inputs.

        Rates already applied are kept; missing ones are resolved. A deal is
        written only when a stored value would change. Closed deals that
        changed get their accruals refreshed.
        """
        summary = RecalculationSummary(dry_run=dry_run)

        query = select(Deal).where(Deal.commissions_manual.is_(False))
        if exclude_cancelled:
            query = query.where(Deal.status != DealStatus.CANCELLED)
        query = query.order_by(Deal.deposit_date, Deal.deal_id)
        if limit is not None:
            query = query.limit(limit)
        deals = (await self.session.execute(query)).scalars().all()

        for deal in deals:
            summary.scanned += 1
            summary.net_profit_before += to_decimal(deal.net_profit)

            raw_breakdown = normalize_expenses(
                broker=deal.broker_expense,
                lawyer=deal.lawyer_expense,
                referral=deal.referral_expense,
                other=deal.other_expense,
            )
            if raw_breakdown.breakdown_sum == ZERO and to_decimal(deal.external_expenses) != ZERO:
                summary.legacy_expense_fallbacks += 1

            if deal.agent_rate_applied is None or deal.rop_rate_applied is None:
                summary.rates_filled += 1
            rates = await self._rates_for_recalculation(deal)

            before = self._snapshot(deal)
            candidate = _Scratch.from_deal(deal)
            apply_waterfall(candidate, rates)
            after = self._snapshot(candidate)
            summary.net_profit_after += to_decimal(candidate.net_profit)

            if before == after:
                summary.unchanged += 1
                continue

            summary.updated += 1
            if dry_run:
                continue
            candidate.copy_to(deal)
            if deal.status == DealStatus.CLOSED:
                await self.session.flush()
                await self.accruals.ensure_accruals(deal.deal_id)

        if not dry_run:
            await self.session.flush()
        logger.info(
            "Recalculated %d deal(s): %d updated, %d unchanged%s",
            summary.scanned,
            summary.updated,
            summary.unchanged,
            " (dry run)" if dry_run else "",
        )
        return summary

    async def _rates_for_recalculation(self, deal: Deal) -> AppliedRates:
        agent_rate = deal.agent_rate_applied
        if agent_rate is None:
            agent = await self.session.get(Employee, deal.agent_id)
            agent_rate = await self.rate_resolver.resolve_applied_rate(
                agent, RateType.AGENT, deal.deposit_date
            )

        rop_rate = deal.rop_rate_applied
        if rop_rate is None:
            rop = await self._resolve_rop(deal.rop_id)
            rop_rate = await self.rate_resolver.resolve_applied_rate(
                rop, RateType.ROP, deal.deposit_date
            )

        return AppliedRates(
            agent_rate=to_decimal(agent_rate),
            rop_rate=to_decimal(rop_rate),
        )

    @staticmethod
    def _snapshot(deal: Any) -> tuple:
        names = (
            "agent_rate_applied",
            "rop_rate_applied",
            *DERIVED_FIELDS,
            *EXPENSE_FIELDS,
        )
        return tuple(_stored(getattr(deal, name)) for name in names)

    # ----- References -----

    async def _require_agent(self, agent_id: UUID | None) -> Employee:
        agent = await self.session.get(Employee, agent_id) if agent_id is not None else None
        if agent is None:
            raise UnknownEmployeeError(agent_id, role="agent")
        return agent

    async def _resolve_rop(self, rop_id: UUID | None) -> Employee | None:
        if rop_id is None:
            return None
        rop = await self.session.get(Employee, rop_id)
        if rop is None:
            logger.warning("Manager %s does not exist; deal has no manager", rop_id)
        return rop


class _Scratch:
    """Detached copy of a deal's calculation fields for dry-run comparison."""

    _FIELDS = (
        "commission",
        "tax_rate",
        "agent_rate_applied",
        "rop_rate_applied",
        *DERIVED_FIELDS,
        *EXPENSE_FIELDS,
    )

    @classmethod
    def from_deal(cls, deal: Deal) -> _Scratch:
        scratch = cls()
        for name in cls._FIELDS:
            setattr(scratch, name, getattr(deal, name))
        return scratch

    def copy_to(self, deal: Deal) -> None:
        for name in self._FIELDS:
            setattr(deal, name, getattr(self, name))
