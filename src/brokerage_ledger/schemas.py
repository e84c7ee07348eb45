"""Pydantic input documents for ledger operations.

Update documents are partial: a field the caller did not send is left
unchanged, a field sent as null is cleared, any other value is written.
`PatchDocument.changes()` exposes exactly the fields that were sent.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from brokerage_ledger.models.enums import (
    AccountType,
    CashFlowStatus,
    CashFlowType,
    DealStatus,
    EmployeeRole,
    EmployeeStatus,
    RateType,
)


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


Role = Annotated[EmployeeRole, BeforeValidator(_upper)]
Status = Annotated[EmployeeStatus, BeforeValidator(_upper)]
RateKind = Annotated[RateType, BeforeValidator(_upper)]
DealState = Annotated[DealStatus, BeforeValidator(_upper)]
FlowKind = Annotated[CashFlowType, BeforeValidator(_upper)]
FlowState = Annotated[CashFlowStatus, BeforeValidator(_upper)]
AccountKind = Annotated[AccountType, BeforeValidator(_upper)]


class Document(BaseModel):
    """Base input document."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)


class PatchDocument(Document):
    """Partial update document with absent/null/value semantics."""

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent, including explicit nulls."""
        return self.model_dump(exclude_unset=True)


# ============================================================================
# Employees
# ============================================================================


class EmployeeCreate(Document):
    name: str
    email: str | None = None
    role: Role = EmployeeRole.AGENT
    status: Status = EmployeeStatus.ACTIVE
    base_rate_agent: Decimal | None = Field(default=None, ge=0)
    base_rate_rop: Decimal | None = Field(default=None, ge=0)
    manager_id: UUID | None = None
    hire_date: date | None = None


class EmployeeUpdate(PatchDocument):
    name: str | None = None
    email: str | None = None
    role: Role | None = None
    status: Status | None = None
    base_rate_agent: Decimal | None = Field(default=None, ge=0)
    base_rate_rop: Decimal | None = Field(default=None, ge=0)
    manager_id: UUID | None = None
    hire_date: date | None = None
    termination_date: date | None = None


class CommissionRateCreate(Document):
    employee_id: UUID
    rate_type: RateKind = RateType.AGENT
    rate: Decimal = Field(ge=0)
    effective_date: date | None = None


# ============================================================================
# Deals
# ============================================================================


class DealCreate(Document):
    """New deal. Omitting `rop_id` assigns the agent's manager."""

    agent_id: UUID
    rop_id: UUID | None = None
    client: str = ""
    object_name: str = ""
    price: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    status: DealState = DealStatus.DEPOSIT
    deposit_date: date | None = None
    deal_date: date | None = None
    planned_close_date: date | None = None
    notes: str | None = None
    tax_rate: Decimal | None = None

    broker_expense: Decimal = Decimal("0")
    lawyer_expense: Decimal = Decimal("0")
    referral_expense: Decimal = Decimal("0")
    other_expense: Decimal = Decimal("0")
    external_expenses: Decimal = Decimal("0")

    commissions_manual: bool = False
    agent_rate_override: Decimal | None = None
    rop_rate_override: Decimal | None = None

    # Operator-entered values, used only when commissions_manual is true
    agent_commission: Decimal | None = None
    rop_commission: Decimal | None = None
    net_profit: Decimal | None = None


class DealUpdate(PatchDocument):
    agent_id: UUID | None = None
    rop_id: UUID | None = None
    client: str | None = None
    object_name: str | None = None
    price: Decimal | None = None
    commission: Decimal | None = None
    status: DealState | None = None
    deposit_date: date | None = None
    deal_date: date | None = None
    planned_close_date: date | None = None
    notes: str | None = None
    tax_rate: Decimal | None = None

    broker_expense: Decimal | None = None
    lawyer_expense: Decimal | None = None
    referral_expense: Decimal | None = None
    other_expense: Decimal | None = None
    external_expenses: Decimal | None = None

    commissions_manual: bool | None = None
    agent_rate_override: Decimal | None = None
    rop_rate_override: Decimal | None = None

    agent_commission: Decimal | None = None
    rop_commission: Decimal | None = None
    net_profit: Decimal | None = None


# ============================================================================
# Treasury
# ============================================================================


class AccountCreate(Document):
    name: str
    account_type: AccountKind = AccountType.BANK
    balance: Decimal = Decimal("0")


class CashFlowCreate(Document):
    """New cash flow. Status defaults to PAID when an actual date is given."""

    flow_type: FlowKind = CashFlowType.EXPENSE
    amount: Decimal = Field(ge=0)
    category: str = ""
    status: FlowState | None = None
    planned_date: date | None = None
    actual_date: date | None = None
    account_id: UUID | None = None
    is_recurring: bool = False
    description: str | None = None


class CashFlowUpdate(PatchDocument):
    flow_type: FlowKind | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    category: str | None = None
    status: FlowState | None = None
    planned_date: date | None = None
    actual_date: date | None = None
    account_id: UUID | None = None
    is_recurring: bool | None = None
    description: str | None = None


class PaymentCreate(Document):
    accrual_id: UUID
    account_id: UUID
    amount: Decimal
    paid_at: date | None = None
    description: str | None = None
