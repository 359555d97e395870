"""
Create tables and seed the default leave type catalog.

Usage:
  python scripts/seed_leave_types.py
"""
import sys
from pathlib import Path

# Add project root so lms is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from lms.core.logging import setup_logging
from lms.db import session as db_session
from lms.db.init_db import init_db
from lms.models.leave import LeaveTypeConfig


def main():
    setup_logging()
    db = db_session.SessionLocal()
    try:
        init_db(db)
        codes = [code for (code,) in db.query(LeaveTypeConfig.code).order_by(LeaveTypeConfig.sort_order).all()]
        print(f"Leave types in catalog: {', '.join(codes)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
