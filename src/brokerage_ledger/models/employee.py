"""Employee and commission rate history models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brokerage_ledger.models.base import Base, Percent, TimestampMixin
from brokerage_ledger.models.enums import EmployeeRole, EmployeeStatus, RateType


class Employee(Base, TimestampMixin):
    """Employee record.

    Employees are soft-retired through `status`; they are never hard-deleted
    while deals reference them.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[EmployeeRole] = mapped_column(
        Enum(EmployeeRole, native_enum=False, length=32),
        nullable=False,
        default=EmployeeRole.AGENT,
    )
    status: Mapped[EmployeeStatus] = mapped_column(
        Enum(EmployeeStatus, native_enum=False, length=32),
        nullable=False,
        default=EmployeeStatus.ACTIVE,
    )
    base_rate_agent: Mapped[Decimal | None] = mapped_column(Percent, nullable=True)
    base_rate_rop: Mapped[Decimal | None] = mapped_column(Percent, nullable=True)
    manager_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="SET NULL"),
        nullable=True,
    )
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "manager_id IS NULL OR manager_id != employee_id",
            name="employee_manager_not_self",
        ),
    )

    # Relationships
    manager: Mapped[Employee | None] = relationship(remote_side=[employee_id])
    commission_rates: Mapped[list[CommissionRate]] = relationship(
        back_populates="employee",
        order_by="CommissionRate.effective_date.desc()",
    )

    def base_rate(self, rate_type: RateType) -> Decimal | None:
        """Base rate for a commission role, if one is configured."""
        if rate_type == RateType.AGENT:
            return self.base_rate_agent
        return self.base_rate_rop


class CommissionRate(Base, TimestampMixin):
    """One entry in an employee's commission rate history.

    Rows are immutable; corrections are new rows with a later effective date.
    """

    __tablename__ = "commission_rate"

    commission_rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    rate_type: Mapped[RateType] = mapped_column(
        Enum(RateType, native_enum=False, length=16),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "rate_type",
            "effective_date",
            name="commission_rate_employee_type_date_unique",
        ),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="commission_rates")

    def is_effective_on(self, as_of_date: date) -> bool:
        """Check if the rate has taken effect by a given date."""
        return self.effective_date <= as_of_date
