"""Tests for the maintenance CLI."""

import json
from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from brokerage_ledger.cli import LedgerCli, to_jsonable
from brokerage_ledger.models import RateType
from brokerage_ledger.services import BalanceCheck, OrphanedAccrual


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


class TestToJsonable:
    def test_dataclass_with_properties(self):
        orphan = OrphanedAccrual(
            accrual_id=UUID(int=1),
            deal_id=UUID(int=2),
            accrual_type=RateType.AGENT,
            employee_id=UUID(int=3),
            current_assignee_id=None,
            amount=Decimal("100"),
            paid=Decimal("40"),
        )

        data = to_jsonable(orphan)

        assert data["accrual_type"] == "AGENT"
        assert data["amount"] == "100"
        assert data["remaining"] == "60"
        assert data["current_assignee_id"] is None

    def test_dates_and_nested_lists(self):
        assert to_jsonable({"when": [date(2024, 1, 2)]}) == {"when": ["2024-01-02"]}


class TestLedgerCli:
    def test_no_command_prints_help(self, capsys):
        assert LedgerCli().run([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_init_then_verify_empty_ledger(self, database_url, capsys):
        cli = LedgerCli()

        assert cli.run(["--database-url", database_url, "init-db"]) == 0
        assert cli.run(["--database-url", database_url, "verify-balances"]) == 0

        assert "All balances consistent." in capsys.readouterr().out

    def test_cleanup_without_confirm_is_dry_run(self, database_url, capsys):
        cli = LedgerCli()
        cli.run(["--database-url", database_url, "init-db"])

        assert cli.run(["--database-url", database_url, "cleanup-orphans"]) == 0

        assert "[DRY RUN] 0 orphaned accrual(s)" in capsys.readouterr().out

    def test_forecast_json(self, database_url, capsys):
        cli = LedgerCli()
        cli.run(["--database-url", database_url, "init-db"])
        capsys.readouterr()

        assert cli.run(["--database-url", database_url, "--json", "forecast", "--months", "2"]) == 0

        months = json.loads(capsys.readouterr().out)
        assert len(months) == 2
        assert months[0]["status"] == "positive"

    def test_balance_check_is_serializable(self):
        check = BalanceCheck(
            account_id=UUID(int=1),
            name="Bank",
            balance=Decimal("10"),
            opening_balance=Decimal("0"),
            realized_total=Decimal("10"),
        )

        assert to_jsonable(check)["drift"] == "0"
