"""Status and type values stored on ledger records."""

from __future__ import annotations

from enum import Enum


class EmployeeRole(str, Enum):
    """Employee roles. ROP is the sales manager an agent reports to."""

    OWNER = "OWNER"
    ACCOUNTANT = "ACCOUNTANT"
    ROP = "ROP"
    AGENT = "AGENT"


class EmployeeStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RateType(str, Enum):
    """Commission role a rate or accrual belongs to."""

    AGENT = "AGENT"
    ROP = "ROP"


class DealStatus(str, Enum):
    """Deal lifecycle. CLOSED and CANCELLED are terminal."""

    DEPOSIT = "DEPOSIT"
    REGISTRATION = "REGISTRATION"
    WAITING_INVOICE = "WAITING_INVOICE"
    WAITING_PAYMENT = "WAITING_PAYMENT"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


OPEN_DEAL_STATUSES = (
    DealStatus.DEPOSIT,
    DealStatus.REGISTRATION,
    DealStatus.WAITING_INVOICE,
    DealStatus.WAITING_PAYMENT,
)

AWAITING_PAYMENT_STATUSES = (
    DealStatus.REGISTRATION,
    DealStatus.WAITING_INVOICE,
    DealStatus.WAITING_PAYMENT,
)


class CashFlowType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class CashFlowStatus(str, Enum):
    PLANNED = "PLANNED"
    PAID = "PAID"


class AccountType(str, Enum):
    BANK = "BANK"
    CASH = "CASH"
    CARD = "CARD"


# Cash-flow categories used for payroll payouts. Their amounts are already
# netted out of deal net profit, so forecasts skip them.
AGENT_PAYOUT_CATEGORY = "Agent commission payout"
ROP_PAYOUT_CATEGORY = "Manager commission payout"

PAYROLL_PAYOUT_CATEGORIES = frozenset({AGENT_PAYOUT_CATEGORY, ROP_PAYOUT_CATEGORY})


def payout_category(rate_type: RateType) -> str:
    """Cash-flow category for a payout of the given accrual type."""
    return AGENT_PAYOUT_CATEGORY if rate_type == RateType.AGENT else ROP_PAYOUT_CATEGORY
