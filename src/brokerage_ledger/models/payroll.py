"""Payroll accrual and payment models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Date, Enum, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brokerage_ledger.models.base import Base, TimestampMixin
from brokerage_ledger.models.enums import RateType

if TYPE_CHECKING:
    from brokerage_ledger.models.deal import Deal
    from brokerage_ledger.models.employee import Employee
    from brokerage_ledger.models.treasury import Account, CashFlow


class PayrollAccrual(Base, TimestampMixin):
    """Amount owed to one employee for one role on one closed deal."""

    __tablename__ = "payroll_accrual"

    accrual_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    deal_id: Mapped[UUID] = mapped_column(
        ForeignKey("deal.deal_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    accrual_type: Mapped[RateType] = mapped_column(
        Enum(RateType, native_enum=False, length=16),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    accrued_at: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "deal_id",
            "employee_id",
            "accrual_type",
            name="payroll_accrual_deal_employee_type_unique",
        ),
    )

    # Relationships
    deal: Mapped[Deal] = relationship(back_populates="accruals")
    employee: Mapped[Employee] = relationship()
    payments: Mapped[list[PayrollPayment]] = relationship(
        back_populates="accrual",
        passive_deletes=True,
        order_by="PayrollPayment.paid_at.desc()",
    )


class PayrollPayment(Base, TimestampMixin):
    """A (possibly partial) payout against an accrual."""

    __tablename__ = "payroll_payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    accrual_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_accrual.accrual_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_at: Mapped[date] = mapped_column(Date, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("account.account_id", ondelete="RESTRICT"),
        nullable=False,
    )
    cash_flow_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cash_flow.cash_flow_id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    accrual: Mapped[PayrollAccrual] = relationship(back_populates="payments")
    account: Mapped[Account] = relationship()
    cash_flow: Mapped[CashFlow | None] = relationship()
