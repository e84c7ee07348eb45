"""Ledger services. Each takes the caller's session; the caller commits."""

from brokerage_ledger.services.accrual_service import (
    AccrualSummary,
    OrphanCleanupResult,
    OrphanedAccrual,
    PayrollAccrualEngine,
)
from brokerage_ledger.services.cash_ledger_service import (
    BalanceCheck,
    CashLedgerReconciler,
    FlowImage,
    plan_balance_adjustments,
    signed_amount,
)
from brokerage_ledger.services.deal_service import DealReconciler, RecalculationSummary
from brokerage_ledger.services.employee_service import EmployeeService
from brokerage_ledger.services.errors import (
    AccountNotFoundError,
    AccrualNotFoundError,
    AlreadyFullyPaidError,
    AmountExceedsRemainingError,
    CashFlowNotFoundError,
    ConsistencyError,
    DealNotFoundError,
    DuplicateEffectiveDateError,
    EmployeeNotFoundError,
    InvalidAmountError,
    LedgerError,
    ManagerCycleError,
    MissingAccountError,
    NotFoundError,
    OrphanDeletionError,
    PayoutFlowEditError,
    UnknownEmployeeError,
    ValidationError,
)
from brokerage_ledger.services.forecast_service import (
    ExpenseDetails,
    ForecastProjector,
    MonthlyForecast,
    TreasuryKpis,
)
from brokerage_ledger.services.payment_service import PaymentAllocator
from brokerage_ledger.services.report_service import ReportService, Rollup

__all__ = [
    # Services
    "CashLedgerReconciler",
    "DealReconciler",
    "EmployeeService",
    "ForecastProjector",
    "PaymentAllocator",
    "PayrollAccrualEngine",
    "ReportService",
    # Results
    "AccrualSummary",
    "BalanceCheck",
    "ExpenseDetails",
    "FlowImage",
    "MonthlyForecast",
    "OrphanCleanupResult",
    "OrphanedAccrual",
    "RecalculationSummary",
    "Rollup",
    "TreasuryKpis",
    "plan_balance_adjustments",
    "signed_amount",
    # Errors
    "AccountNotFoundError",
    "AccrualNotFoundError",
    "AlreadyFullyPaidError",
    "AmountExceedsRemainingError",
    "CashFlowNotFoundError",
    "ConsistencyError",
    "DealNotFoundError",
    "DuplicateEffectiveDateError",
    "EmployeeNotFoundError",
    "InvalidAmountError",
    "LedgerError",
    "ManagerCycleError",
    "MissingAccountError",
    "NotFoundError",
    "OrphanDeletionError",
    "PayoutFlowEditError",
    "UnknownEmployeeError",
    "ValidationError",
]
