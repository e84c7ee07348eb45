"""Entry point for running the maintenance CLI."""

import sys

from brokerage_ledger.cli import main

if __name__ == "__main__":
    sys.exit(main())
