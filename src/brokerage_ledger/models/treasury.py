"""Cash account and cash-flow models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brokerage_ledger.models.base import Base, TimestampMixin
from brokerage_ledger.models.enums import AccountType, CashFlowStatus, CashFlowType


class Account(Base, TimestampMixin):
    """A cash account with a materialized running balance.

    `balance` is maintained by delta application. `opening_balance` records
    the seed so the balance can be audited against realized flows.
    """

    __tablename__ = "account"

    account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        Enum(AccountType, native_enum=False, length=16),
        nullable=False,
        default=AccountType.BANK,
    )
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    cash_flows: Mapped[list[CashFlow]] = relationship(back_populates="account")


class CashFlow(Base, TimestampMixin):
    """A planned or realized movement of money.

    A row is realized (counted in its account's balance) while `actual_date`
    is set.
    """

    __tablename__ = "cash_flow"

    cash_flow_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    flow_type: Mapped[CashFlowType] = mapped_column(
        Enum(CashFlowType, native_enum=False, length=16),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    status: Mapped[CashFlowStatus] = mapped_column(
        Enum(CashFlowStatus, native_enum=False, length=16),
        nullable=False,
        default=CashFlowStatus.PLANNED,
    )
    planned_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    account_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("account.account_id", ondelete="RESTRICT"),
        nullable=True,
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="cash_flow_amount_unsigned"),
        CheckConstraint(
            "status != 'PAID' OR account_id IS NOT NULL",
            name="cash_flow_paid_requires_account",
        ),
    )

    account: Mapped[Account | None] = relationship(back_populates="cash_flows")
