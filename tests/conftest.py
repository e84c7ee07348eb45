"""Pytest fixtures for brokerage ledger tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brokerage_ledger.config import Settings
from brokerage_ledger.database import Database
from brokerage_ledger.models import Account, EmployeeRole
from brokerage_ledger.schemas import AccountCreate, EmployeeCreate
from brokerage_ledger.services import CashLedgerReconciler, EmployeeService

# In-memory SQLite; every test gets its own database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        database_echo=False,
        default_tax_rate=Decimal("6"),
        payment_epsilon=Decimal("0.00001"),
        forecast_months=12,
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Create a fresh schema."""
    db = Database(TEST_DATABASE_URL, echo=False)
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture
async def session(database) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with database.session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def manager(session):
    """Sales manager with a 10% base manager rate."""
    return await EmployeeService(session).create_employee(
        EmployeeCreate(
            name="Maria Manager",
            role=EmployeeRole.ROP,
            base_rate_agent=Decimal("40"),
            base_rate_rop=Decimal("10"),
            hire_date=date(2020, 1, 1),
        )
    )


@pytest_asyncio.fixture
async def agent(session, manager):
    """Agent with a 50% base rate reporting to `manager`."""
    return await EmployeeService(session).create_employee(
        EmployeeCreate(
            name="Alex Agent",
            role=EmployeeRole.AGENT,
            base_rate_agent=Decimal("50"),
            manager_id=manager.employee_id,
            hire_date=date(2021, 3, 1),
        )
    )


@pytest_asyncio.fixture
async def second_agent(session, manager):
    return await EmployeeService(session).create_employee(
        EmployeeCreate(
            name="Bella Agent",
            role=EmployeeRole.AGENT,
            base_rate_agent=Decimal("50"),
            manager_id=manager.employee_id,
        )
    )


@pytest_asyncio.fixture
async def account(session, settings):
    """Bank account seeded with 1000."""
    return await CashLedgerReconciler(session, settings).create_account(
        AccountCreate(name="Main bank", balance=Decimal("1000"))
    )


@pytest.fixture
def balance_of(session):
    """Reads an account balance as stored in the database."""

    async def read(account_id: UUID) -> Decimal:
        result = await session.execute(
            select(Account.balance).where(Account.account_id == account_id)
        )
        return result.scalar_one()

    return read
