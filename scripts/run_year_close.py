"""
Year-end close: carry forward or expire the remaining balance of every row of a year.

Usage:
  python scripts/run_year_close.py --year 2025
  python scripts/run_year_close.py --year 2025 --actor-id 1
"""
import argparse
import sys
from pathlib import Path

# Add project root so lms is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from lms.core.logging import setup_logging
from lms.db import session as db_session
from lms.services import leave_balance_service as ledger


def main():
    parser = argparse.ArgumentParser(description="Run leave year close")
    parser.add_argument("--year", type=int, required=True, help="Year being closed (e.g. 2025)")
    parser.add_argument("--actor-id", type=int, default=None, help="Employee id recorded as actor")
    parser.add_argument("--verbose", action="store_true", help="Log every carried or expired row")
    args = parser.parse_args()

    setup_logging("DEBUG" if args.verbose else None)
    db = db_session.SessionLocal()
    try:
        summary = ledger.run_year_close(db, args.year, actor_id=args.actor_id)
        print(
            f"Year {summary['year']} closed: {summary['rows_processed']} rows, "
            f"{summary['total_carried_forward']} days carried into {summary['next_year']}, "
            f"{summary['total_expired']} days expired"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
