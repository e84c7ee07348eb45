"""Deal model with commission waterfall fields."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brokerage_ledger.models.base import Base, Percent, TimestampMixin
from brokerage_ledger.models.enums import DealStatus, RateType

if TYPE_CHECKING:
    from brokerage_ledger.models.employee import Employee
    from brokerage_ledger.models.payroll import PayrollAccrual


class Deal(Base, TimestampMixin):
    """A brokerage deal.

    When `commissions_manual` is false, the rate/commission/net profit
    columns are derived from the waterfall over the deal's current inputs.
    When true, they hold operator-entered values.
    """

    __tablename__ = "deal"

    deal_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client: Mapped[str] = mapped_column(String, nullable=False, default="")
    object_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    commission: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    rop_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[DealStatus] = mapped_column(
        Enum(DealStatus, native_enum=False, length=32),
        nullable=False,
        default=DealStatus.DEPOSIT,
    )
    deposit_date: Mapped[date] = mapped_column(Date, nullable=False)
    deal_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Expense breakdown plus the legacy aggregate
    broker_expense: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    lawyer_expense: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    referral_expense: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    other_expense: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    external_expenses: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    tax_rate: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("6"))
    commissions_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Derived fields
    agent_rate_applied: Mapped[Decimal | None] = mapped_column(Percent, nullable=True)
    rop_rate_applied: Mapped[Decimal | None] = mapped_column(Percent, nullable=True)
    agent_commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    rop_commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    net_profit: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Relationships
    agent: Mapped[Employee] = relationship(foreign_keys=[agent_id])
    rop: Mapped[Employee | None] = relationship(foreign_keys=[rop_id])
    accruals: Mapped[list[PayrollAccrual]] = relationship(
        back_populates="deal",
        passive_deletes=True,
    )

    def assignee_for(self, accrual_type: RateType) -> UUID | None:
        """Employee currently assigned to the given commission role."""
        return self.agent_id if accrual_type == RateType.AGENT else self.rop_id
