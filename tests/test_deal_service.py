"""Tests for deal reconciliation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from brokerage_ledger.models import Deal, DealStatus, PayrollAccrual, PayrollPayment, RateType
from brokerage_ledger.schemas import CommissionRateCreate, DealCreate, DealUpdate
from brokerage_ledger.services import (
    DealNotFoundError,
    DealReconciler,
    EmployeeService,
    PaymentAllocator,
    PayrollAccrualEngine,
    UnknownEmployeeError,
)


def _deal(agent, **overrides) -> DealCreate:
    data = {
        "agent_id": agent.employee_id,
        "client": "Ivanov",
        "object_name": "Flat 12",
        "price": Decimal("10000000"),
        "commission": Decimal("300000"),
        "deposit_date": date(2024, 5, 10),
        "referral_expense": Decimal("20000"),
        "broker_expense": Decimal("5000"),
        "lawyer_expense": Decimal("10000"),
    }
    data.update(overrides)
    return DealCreate(**data)


class TestCreateDeal:
    """Test creation defaults and derived fields."""

    @pytest.mark.asyncio
    async def test_commission_split_on_create(self, session, settings, agent, manager):
        deal = await DealReconciler(session, settings).create_deal(_deal(agent))

        assert deal.rop_id == manager.employee_id
        assert deal.tax_rate == Decimal("6")
        assert deal.status == DealStatus.DEPOSIT
        assert deal.agent_rate_applied == Decimal("50")
        assert deal.rop_rate_applied == Decimal("10")
        assert deal.agent_commission == Decimal("140000")
        assert deal.rop_commission == Decimal("28000")
        assert deal.net_profit == Decimal("79000")
        assert deal.external_expenses == Decimal("35000")

    @pytest.mark.asyncio
    async def test_unknown_agent_rejected(self, session, settings):
        with pytest.raises(UnknownEmployeeError):
            await DealReconciler(session, settings).create_deal(DealCreate(agent_id=uuid4()))

        count = await session.execute(select(func.count()).select_from(Deal))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_unknown_manager_degrades_to_zero(self, session, settings, agent):
        deal = await DealReconciler(session, settings).create_deal(_deal(agent, rop_id=uuid4()))

        assert deal.rop_id is None
        assert deal.rop_commission == Decimal("0")
        assert deal.net_profit == Decimal("107000")

    @pytest.mark.asyncio
    async def test_explicit_null_manager(self, session, settings, agent):
        """Sending rop_id=None means no manager, not the agent's manager."""
        deal = await DealReconciler(session, settings).create_deal(_deal(agent, rop_id=None))

        assert deal.rop_id is None

    @pytest.mark.asyncio
    async def test_rate_history_resolved_on_deposit_date(self, session, settings, agent):
        await EmployeeService(session).add_commission_rate(
            CommissionRateCreate(
                employee_id=agent.employee_id,
                rate_type=RateType.AGENT,
                rate=Decimal("40"),
                effective_date=date(2024, 1, 1),
            )
        )
        reconciler = DealReconciler(session, settings)

        before = await reconciler.create_deal(_deal(agent, deposit_date=date(2023, 12, 1)))
        after = await reconciler.create_deal(_deal(agent, deposit_date=date(2024, 2, 1)))

        assert before.agent_rate_applied == Decimal("50")
        assert after.agent_rate_applied == Decimal("40")
        assert after.agent_commission == Decimal("112000")

    @pytest.mark.asyncio
    async def test_legacy_expenses_normalized_on_write(self, session, settings, agent):
        deal = await DealReconciler(session, settings).create_deal(
            _deal(
                agent,
                referral_expense=Decimal("0"),
                broker_expense=Decimal("0"),
                lawyer_expense=Decimal("0"),
                external_expenses=Decimal("15000"),
            )
        )

        assert deal.other_expense == Decimal("15000")
        assert deal.external_expenses == Decimal("15000")

    @pytest.mark.asyncio
    async def test_manual_deal_keeps_entered_values(self, session, settings, agent):
        deal = await DealReconciler(session, settings).create_deal(
            _deal(
                agent,
                commissions_manual=True,
                agent_commission=Decimal("1000"),
                rop_commission=Decimal("500"),
                net_profit=Decimal("42"),
            )
        )

        assert deal.agent_commission == Decimal("1000")
        assert deal.rop_commission == Decimal("500")
        assert deal.net_profit == Decimal("42")
        assert deal.agent_rate_applied is None

    @pytest.mark.asyncio
    async def test_closed_on_create_gets_deal_date_and_accruals(self, session, settings, agent):
        deal = await DealReconciler(session, settings).create_deal(
            _deal(agent, status=DealStatus.CLOSED), today=date(2024, 6, 1)
        )

        assert deal.deal_date == date(2024, 6, 1)
        accruals = await PayrollAccrualEngine(session).list_accruals()
        assert {(a.accrual_type, a.amount) for a in accruals} == {
            (RateType.AGENT, Decimal("140000")),
            (RateType.ROP, Decimal("28000")),
        }


class TestUpdateDeal:
    """Test partial updates and recalculation triggers."""

    @pytest.mark.asyncio
    async def test_commission_change_recalculates(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))

        updated = await reconciler.update_deal(deal.deal_id, DealUpdate(commission=Decimal("200000")))

        # 200000 - 12000 - 20000 - 18000 - 90000 - 15000
        assert updated.agent_commission == Decimal("90000")
        assert updated.net_profit == Decimal("45000")

    @pytest.mark.asyncio
    async def test_non_trigger_change_keeps_derived_fields(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent, agent_rate_override=Decimal("30")))

        updated = await reconciler.update_deal(deal.deal_id, DealUpdate(notes="called client"))

        assert updated.notes == "called client"
        assert updated.agent_rate_applied == Decimal("30")

    @pytest.mark.asyncio
    async def test_rate_override(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))

        updated = await reconciler.update_deal(
            deal.deal_id, DealUpdate(agent_rate_override=Decimal("25"))
        )

        assert updated.agent_rate_applied == Decimal("25")
        assert updated.agent_commission == Decimal("70000")

    @pytest.mark.asyncio
    async def test_explicit_null_expense_clears_to_zero(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))

        updated = await reconciler.update_deal(deal.deal_id, DealUpdate(broker_expense=None))

        assert updated.broker_expense == Decimal("0")
        assert updated.external_expenses == Decimal("30000")
        assert updated.net_profit == Decimal("84000")

    @pytest.mark.asyncio
    async def test_manual_deal_not_recomputed(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(
            _deal(agent, commissions_manual=True, agent_commission=Decimal("1000"))
        )

        updated = await reconciler.update_deal(
            deal.deal_id,
            DealUpdate(commission=Decimal("500000"), rop_commission=Decimal("300")),
        )

        assert updated.commission == Decimal("500000")
        assert updated.agent_commission == Decimal("1000")
        assert updated.rop_commission == Decimal("300")

    @pytest.mark.asyncio
    async def test_switching_off_manual_recalculates(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(
            _deal(agent, commissions_manual=True, agent_commission=Decimal("1"))
        )

        updated = await reconciler.update_deal(deal.deal_id, DealUpdate(commissions_manual=False))

        assert updated.agent_commission == Decimal("140000")
        assert updated.net_profit == Decimal("79000")

    @pytest.mark.asyncio
    async def test_close_defaults_deal_date(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))

        updated = await reconciler.update_deal(
            deal.deal_id, DealUpdate(status="closed"), today=date(2024, 8, 15)
        )

        assert updated.status == DealStatus.CLOSED
        assert updated.deal_date == date(2024, 8, 15)

    @pytest.mark.asyncio
    async def test_any_status_may_follow_any_other(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent, status=DealStatus.CANCELLED))

        updated = await reconciler.update_deal(deal.deal_id, DealUpdate(status=DealStatus.DEPOSIT))

        assert updated.status == DealStatus.DEPOSIT

    @pytest.mark.asyncio
    async def test_update_missing_deal(self, session, settings):
        with pytest.raises(DealNotFoundError):
            await DealReconciler(session, settings).update_deal(uuid4(), DealUpdate(notes="x"))

    @pytest.mark.asyncio
    async def test_reassigning_to_unknown_agent_rejected(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))

        with pytest.raises(UnknownEmployeeError):
            await reconciler.update_deal(deal.deal_id, DealUpdate(agent_id=uuid4()))

        assert deal.agent_id == agent.employee_id


class TestDeleteDeal:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_accruals_and_payments(
        self, session, settings, agent, account
    ):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(
            _deal(agent, status=DealStatus.CLOSED, commission=Decimal("20000"), referral_expense=Decimal("0"),
                  broker_expense=Decimal("0"), lawyer_expense=Decimal("0"))
        )
        accrual = (await PayrollAccrualEngine(session).list_accruals(accrual_type=RateType.AGENT))[0]
        await PaymentAllocator(session, settings).allocate_payment(
            accrual.accrual_id, account.account_id, Decimal("500")
        )

        await reconciler.delete_deal(deal.deal_id)

        for model in (Deal, PayrollAccrual, PayrollPayment):
            count = await session.execute(select(func.count()).select_from(model))
            assert count.scalar_one() == 0


class TestRecalculateDeals:
    """Test the offline batch recalculation."""

    @pytest.mark.asyncio
    async def test_dry_run_reports_without_writing(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        deal = await reconciler.create_deal(_deal(agent))
        deal.net_profit = Decimal("1")
        await session.flush()

        summary = await reconciler.recalculate_deals(dry_run=True)

        assert summary.scanned == 1
        assert summary.updated == 1
        assert summary.net_profit_after == Decimal("79000")
        assert deal.net_profit == Decimal("1")

    @pytest.mark.asyncio
    async def test_fills_missing_rates_and_keeps_applied_ones(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        stale = await reconciler.create_deal(_deal(agent, agent_rate_override=Decimal("30")))
        legacy = await reconciler.create_deal(_deal(agent))
        legacy.agent_rate_applied = None
        legacy.agent_commission = None
        await session.flush()

        summary = await reconciler.recalculate_deals()

        assert summary.rates_filled == 1
        assert summary.updated == 1
        assert summary.unchanged == 1
        assert stale.agent_rate_applied == Decimal("30")
        assert legacy.agent_rate_applied == Decimal("50")
        assert legacy.agent_commission == Decimal("140000")

    @pytest.mark.asyncio
    async def test_manual_and_cancelled_deals_skipped(self, session, settings, agent):
        reconciler = DealReconciler(session, settings)
        await reconciler.create_deal(_deal(agent, commissions_manual=True))
        await reconciler.create_deal(_deal(agent, status=DealStatus.CANCELLED))

        summary = await reconciler.recalculate_deals(exclude_cancelled=True)

        assert summary.scanned == 0
