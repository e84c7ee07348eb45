"""Brokerage ledger command line interface.

Offline maintenance tools:
- Schema creation
- Batch recalculation of deal commissions
- Orphaned accrual scan and cleanup
- Account balance verification
- Cash forecast

Usage:
    python -m brokerage_ledger init-db
    python -m brokerage_ledger recalculate-deals --dry-run
    python -m brokerage_ledger find-orphans
    python -m brokerage_ledger cleanup-orphans --confirm
    python -m brokerage_ledger verify-balances
    python -m brokerage_ledger forecast --months 6
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import UUID

from brokerage_ledger.config import get_settings
from brokerage_ledger.database import Database
from brokerage_ledger.services import (
    CashLedgerReconciler,
    DealReconciler,
    ForecastProjector,
    LedgerError,
    PayrollAccrualEngine,
)

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def to_jsonable(value: Any) -> Any:
    """Convert result dataclasses to JSON-serializable structures."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
        for name in ("remaining", "status", "drift", "expected"):
            attr = getattr(type(value), name, None)
            if isinstance(attr, property):
                data[name] = to_jsonable(getattr(value, name))
        return data
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class LedgerCli:
    """Brokerage ledger command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m brokerage_ledger",
            description="Brokerage ledger maintenance tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Log level (default: $LOG_LEVEL)",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print results as JSON",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables")

        # recalculate-deals command
        recalc = subparsers.add_parser(
            "recalculate-deals",
            help="Recompute commissions of all non-manual deals",
        )
        recalc.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would change without writing",
        )
        recalc.add_argument(
            "--exclude-cancelled",
            action="store_true",
            help="Skip cancelled deals",
        )
        recalc.add_argument(
            "--limit",
            type=int,
            help="Maximum deals to process",
        )

        subparsers.add_parser(
            "find-orphans",
            help="List accruals whose employee no longer holds the role on the deal",
        )

        # cleanup-orphans command
        cleanup = subparsers.add_parser(
            "cleanup-orphans",
            help="Delete orphaned accruals and their payments",
        )
        cleanup.add_argument(
            "--confirm",
            action="store_true",
            help="Actually delete (default is a dry run)",
        )
        cleanup.add_argument(
            "--accrual-id",
            type=parse_uuid,
            action="append",
            dest="accrual_ids",
            help="Restrict cleanup to this accrual (repeatable)",
        )

        subparsers.add_parser(
            "verify-balances",
            help="Check account balances against realized cash flows",
        )

        # forecast command
        forecast = subparsers.add_parser(
            "forecast",
            help="Project account balances month by month",
        )
        forecast.add_argument(
            "--months",
            type=int,
            help="Months to project (default: $FORECAST_MONTHS)",
        )
        forecast.add_argument(
            "--year",
            type=int,
            help="Calendar year; a past year gives a historical view",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = get_settings()
        logging.basicConfig(
            level=parsed.log_level or settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        handlers: dict[str, Callable[[argparse.Namespace, Database], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "recalculate-deals": self._cmd_recalculate_deals,
            "find-orphans": self._cmd_find_orphans,
            "cleanup-orphans": self._cmd_cleanup_orphans,
            "verify-balances": self._cmd_verify_balances,
            "forecast": self._cmd_forecast,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(self._execute(handler, parsed))
        except LedgerError as e:
            print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
            return 1

    async def _execute(
        self,
        handler: Callable[[argparse.Namespace, Database], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        db = Database(args.database_url)
        try:
            return await handler(args, db)
        finally:
            await db.dispose()

    def _emit(self, args: argparse.Namespace, payload: Any) -> None:
        print(json.dumps(to_jsonable(payload), indent=2))

    # ----- Commands -----

    async def _cmd_init_db(self, args: argparse.Namespace, db: Database) -> int:
        """Create tables."""
        await db.create_all()
        print("Schema created.")
        return 0

    async def _cmd_recalculate_deals(self, args: argparse.Namespace, db: Database) -> int:
        """Recompute derived deal fields."""
        async with db.session() as session:
            summary = await DealReconciler(session).recalculate_deals(
                dry_run=args.dry_run,
                exclude_cancelled=args.exclude_cancelled,
                limit=args.limit,
            )
            if args.dry_run:
                # Nothing should have been written; make sure nothing is committed
                await session.rollback()

        if args.json:
            self._emit(args, summary)
            return 0

        print("Deal recalculation" + (" [DRY RUN]" if args.dry_run else ""))
        print("=" * 40)
        print(f"  Scanned:                  {summary.scanned}")
        print(f"  Updated:                  {summary.updated}")
        print(f"  Unchanged:                {summary.unchanged}")
        print(f"  Rates filled:             {summary.rates_filled}")
        print(f"  Legacy expense fallbacks: {summary.legacy_expense_fallbacks}")
        print(f"  Net profit before: {summary.net_profit_before:>15,.2f}")
        print(f"  Net profit after:  {summary.net_profit_after:>15,.2f}")
        print(f"  Difference:        {summary.net_profit_delta:>15,.2f}")
        return 0

    async def _cmd_find_orphans(self, args: argparse.Namespace, db: Database) -> int:
        """Report orphaned accruals."""
        async with db.session() as session:
            orphans = await PayrollAccrualEngine(session).find_orphaned_accruals()

        if args.json:
            self._emit(args, orphans)
            return 0

        if not orphans:
            print("No orphaned accruals.")
            return 0

        print(f"Orphaned accruals: {len(orphans)}")
        print("-" * 60)
        for o in orphans:
            print(f"  {o.accrual_id} | deal {o.deal_id} | {o.accrual_type.value}")
            print(f"    employee {o.employee_id} -> current {o.current_assignee_id}")
            print(f"    amount {o.amount:,.2f} paid {o.paid:,.2f} remaining {o.remaining:,.2f}")
        return 0

    async def _cmd_cleanup_orphans(self, args: argparse.Namespace, db: Database) -> int:
        """Delete orphaned accruals, only when confirmed."""
        async with db.session() as session:
            engine = PayrollAccrualEngine(session)
            orphans = await engine.find_orphaned_accruals()
            targets = [
                o.accrual_id
                for o in orphans
                if not args.accrual_ids or o.accrual_id in args.accrual_ids
            ]

            if not args.confirm:
                print(f"[DRY RUN] {len(targets)} orphaned accrual(s) would be deleted.")
                for accrual_id in targets:
                    print(f"  {accrual_id}")
                print("Re-run with --confirm to delete.")
                return 0

            result = await engine.delete_orphaned_accruals(targets, confirm=True)

        if args.json:
            self._emit(args, result)
            return 0

        print(f"Deleted {result.deleted_accruals} accrual(s), {result.deleted_payments} payment(s).")
        if result.unlinked_cash_flows:
            print(f"Payout cash flows kept and unlinked: {len(result.unlinked_cash_flows)}")
        return 0

    async def _cmd_verify_balances(self, args: argparse.Namespace, db: Database) -> int:
        """Compare materialized balances with realized flows."""
        settings = get_settings()
        async with db.session() as session:
            checks = await CashLedgerReconciler(session, settings).verify_balances()

        drifted = [c for c in checks if not c.is_consistent(settings.payment_epsilon)]
        if args.json:
            self._emit(args, checks)
            return 1 if drifted else 0

        print("Balance verification")
        print("=" * 60)
        for check in checks:
            status_str = "OK" if check.is_consistent(settings.payment_epsilon) else "DRIFT"
            print(f"\n{check.name}: {status_str}")
            print(f"  Balance:  {check.balance:>15,.2f}")
            print(f"  Expected: {check.expected:>15,.2f}")
            print(f"  Drift:    {check.drift:>15,.2f}")

        print("\n" + "=" * 60)
        print(f"{len(drifted)} account(s) drifted." if drifted else "All balances consistent.")
        return 1 if drifted else 0

    async def _cmd_forecast(self, args: argparse.Namespace, db: Database) -> int:
        """Print the monthly projection."""
        async with db.session() as session:
            forecast = await ForecastProjector(session).project(
                months_ahead=args.months,
                year=args.year,
            )

        if args.json:
            self._emit(args, forecast)
            return 0

        print(f"{'Month':<8} {'Opening':>14} {'Income':>14} {'Planned':>14} {'Closing':>14}  Status")
        for month in forecast:
            print(
                f"{month.month_key:<8} {month.opening_balance:>14,.2f} "
                f"{month.expected_income:>14,.2f} {month.planned_expenses:>14,.2f} "
                f"{month.closing_balance:>14,.2f}  {month.status}"
            )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
