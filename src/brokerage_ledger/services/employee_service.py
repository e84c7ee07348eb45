"""Employee and commission rate administration."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.models import CommissionRate, Employee, EmployeeStatus
from brokerage_ledger.schemas import CommissionRateCreate, EmployeeCreate, EmployeeUpdate
from brokerage_ledger.services.errors import (
    DuplicateEffectiveDateError,
    EmployeeNotFoundError,
    ManagerCycleError,
    UnknownEmployeeError,
)

logger = logging.getLogger(__name__)

# Columns an explicit null leaves untouched
_REQUIRED_FIELDS = frozenset({"name", "role", "status"})


class EmployeeService:
    """Maintains employees, their reporting line and rate history.

    Employees are retired, never deleted, so deals keep their references.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFoundError(employee_id)
        return employee

    async def list_employees(self, include_inactive: bool = False) -> list[Employee]:
        query = select(Employee)
        if not include_inactive:
            query = query.where(Employee.status == EmployeeStatus.ACTIVE)
        result = await self.session.execute(query.order_by(Employee.name))
        return list(result.scalars().all())

    async def create_employee(self, data: EmployeeCreate) -> Employee:
        if data.manager_id is not None and await self.session.get(Employee, data.manager_id) is None:
            raise UnknownEmployeeError(data.manager_id, role="manager")

        employee = Employee(
            name=data.name,
            email=data.email,
            role=data.role,
            status=data.status,
            base_rate_agent=data.base_rate_agent,
            base_rate_rop=data.base_rate_rop,
            manager_id=data.manager_id,
            hire_date=data.hire_date,
        )
        self.session.add(employee)
        await self.session.flush()
        logger.info("Created employee %s (%s)", employee.employee_id, employee.role.value)
        return employee

    async def update_employee(self, employee_id: UUID, data: EmployeeUpdate) -> Employee:
        """Apply a partial update.

        Raises:
            EmployeeNotFoundError: If the employee does not exist
            UnknownEmployeeError: If the new manager does not exist
            ManagerCycleError: If the new manager reports, directly or not, to this employee
        """
        employee = await self.get_employee(employee_id)
        changes = data.changes()

        manager_id = changes.get("manager_id")
        if manager_id is not None:
            await self._check_manager(employee_id, manager_id)

        for name, value in changes.items():
            if value is None and name in _REQUIRED_FIELDS:
                continue
            setattr(employee, name, value)

        await self.session.flush()
        return employee

    async def retire_employee(self, employee_id: UUID, termination_date: date | None = None) -> Employee:
        """Soft-retire an employee; deals and accruals keep pointing at them."""
        employee = await self.get_employee(employee_id)
        employee.status = EmployeeStatus.INACTIVE
        employee.termination_date = termination_date or date.today()
        await self.session.flush()
        logger.info("Retired employee %s as of %s", employee_id, employee.termination_date)
        return employee

    async def _check_manager(self, employee_id: UUID, manager_id: UUID) -> None:
        """Walk up the reporting line from the proposed manager."""
        if manager_id == employee_id:
            raise ManagerCycleError(employee_id, manager_id)

        seen = {employee_id}
        current_id: UUID | None = manager_id
        while current_id is not None:
            if current_id in seen:
                raise ManagerCycleError(employee_id, manager_id)
            seen.add(current_id)
            current = await self.session.get(Employee, current_id)
            if current is None:
                raise UnknownEmployeeError(current_id, role="manager")
            current_id = current.manager_id

    # ----- Rate history -----

    async def add_commission_rate(self, data: CommissionRateCreate) -> CommissionRate:
        """Append a rate to the history.

        Rates are immutable; a correction is a new row with a later date.

        Raises:
            EmployeeNotFoundError: If the employee does not exist
            DuplicateEffectiveDateError: If a rate of this type already starts that day
        """
        await self.get_employee(data.employee_id)
        effective_date = data.effective_date or date.today()

        existing = await self.session.execute(
            select(CommissionRate.commission_rate_id).where(
                CommissionRate.employee_id == data.employee_id,
                CommissionRate.rate_type == data.rate_type,
                CommissionRate.effective_date == effective_date,
            )
        )
        if existing.first() is not None:
            raise DuplicateEffectiveDateError(data.employee_id, data.rate_type.value, effective_date)

        rate = CommissionRate(
            employee_id=data.employee_id,
            rate_type=data.rate_type,
            rate=data.rate,
            effective_date=effective_date,
        )
        self.session.add(rate)
        await self.session.flush()
        logger.info(
            "Employee %s %s rate %s%% from %s",
            data.employee_id,
            data.rate_type.value,
            data.rate,
            effective_date,
        )
        return rate

    async def list_commission_rates(self, employee_id: UUID | None = None) -> list[CommissionRate]:
        """Rate history, newest effective date first."""
        query = select(CommissionRate)
        if employee_id is not None:
            query = query.where(CommissionRate.employee_id == employee_id)
        result = await self.session.execute(
            query.order_by(CommissionRate.effective_date.desc(), CommissionRate.created_at.desc())
        )
        return list(result.scalars().all())
