"""ORM models for the brokerage ledger."""

from brokerage_ledger.models.base import Base, TimestampMixin
from brokerage_ledger.models.deal import Deal
from brokerage_ledger.models.employee import CommissionRate, Employee
from brokerage_ledger.models.enums import (
    AccountType,
    CashFlowStatus,
    CashFlowType,
    DealStatus,
    EmployeeRole,
    EmployeeStatus,
    RateType,
)
from brokerage_ledger.models.payroll import PayrollAccrual, PayrollPayment
from brokerage_ledger.models.treasury import Account, CashFlow

__all__ = [
    "Base",
    "TimestampMixin",
    "Account",
    "AccountType",
    "CashFlow",
    "CashFlowStatus",
    "CashFlowType",
    "CommissionRate",
    "Deal",
    "DealStatus",
    "Employee",
    "EmployeeRole",
    "EmployeeStatus",
    "PayrollAccrual",
    "PayrollPayment",
    "RateType",
]
