"""Error taxonomy for ledger operations.

Every error is raised before the operation's first write. Callers retry the
whole operation with fresh data; nothing is retried step by step.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, **details: Any):
        self.details = details
        super().__init__(message)


# ===== Validation =====


class ValidationError(LedgerError):
    """Bad input, rejected before any write."""

    code = "VALIDATION_ERROR"


class UnknownEmployeeError(ValidationError):
    """A required employee reference does not resolve."""

    code = "UNKNOWN_EMPLOYEE"

    def __init__(self, employee_id: UUID | None, role: str = "agent"):
        self.employee_id = employee_id
        super().__init__(f"{role} {employee_id} does not exist", employee_id=employee_id)


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal, reason: str = "amount must be greater than zero"):
        self.amount = amount
        super().__init__(f"{reason} (got {amount})", amount=amount)


class MissingAccountError(ValidationError):
    """A realized cash flow needs an account."""

    code = "MISSING_ACCOUNT"

    def __init__(self) -> None:
        super().__init__("account_id is required for PAID operations")


class ManagerCycleError(ValidationError):
    code = "MANAGER_CYCLE"

    def __init__(self, employee_id: UUID, manager_id: UUID):
        self.employee_id = employee_id
        self.manager_id = manager_id
        super().__init__(
            f"Assigning manager {manager_id} to {employee_id} would create a reporting cycle",
            employee_id=employee_id,
            manager_id=manager_id,
        )


class DuplicateEffectiveDateError(ValidationError):
    code = "DUPLICATE_EFFECTIVE_DATE"

    def __init__(self, employee_id: UUID, rate_type: str, effective_date: Any):
        super().__init__(
            f"Employee {employee_id} already has a {rate_type} rate effective {effective_date}",
            employee_id=employee_id,
            rate_type=rate_type,
            effective_date=effective_date,
        )


class PayoutFlowEditError(ValidationError):
    """Amount, type and account of a payout cash flow follow its payment."""

    code = "PAYOUT_FLOW_LOCKED"

    def __init__(self, cash_flow_id: UUID, fields: list[str]):
        self.cash_flow_id = cash_flow_id
        super().__init__(
            f"Cash flow {cash_flow_id} backs a payroll payment; {', '.join(fields)} cannot change",
            cash_flow_id=cash_flow_id,
            fields=fields,
        )


class OrphanDeletionError(ValidationError):
    """Orphan cleanup was not confirmed or targets a non-orphaned accrual."""

    code = "ORPHAN_DELETION_REJECTED"


# ===== Consistency =====


class ConsistencyError(LedgerError):
    """The request conflicts with current state; retry with fresh data."""

    code = "CONSISTENCY_ERROR"


class AlreadyFullyPaidError(ConsistencyError):
    code = "ALREADY_FULLY_PAID"

    def __init__(self, accrual_id: UUID):
        self.accrual_id = accrual_id
        super().__init__(f"Accrual {accrual_id} is already fully paid", accrual_id=accrual_id)


class AmountExceedsRemainingError(ConsistencyError):
    code = "AMOUNT_EXCEEDS_REMAINING"

    def __init__(self, accrual_id: UUID, amount: Decimal, remaining: Decimal):
        self.accrual_id = accrual_id
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Payment {amount} exceeds remaining {remaining} on accrual {accrual_id}",
            accrual_id=accrual_id,
            amount=amount,
            remaining=remaining,
        )


# ===== Not found =====


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    entity = "Record"

    def __init__(self, entity_id: UUID):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found", entity_id=entity_id)


class DealNotFoundError(NotFoundError):
    entity = "Deal"


class AccrualNotFoundError(NotFoundError):
    entity = "Accrual"


class AccountNotFoundError(NotFoundError):
    entity = "Account"


class CashFlowNotFoundError(NotFoundError):
    entity = "Cash flow"


class EmployeeNotFoundError(NotFoundError):
    entity = "Employee"
