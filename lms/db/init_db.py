"""
Database initialization
Creates tables and seeds the default leave type catalog
"""
import logging
from decimal import Decimal
from typing import List
from sqlalchemy.orm import Session
from lms.db.base import Base
from lms.db.session import engine
from lms.models.leave import AccrualFrequency, LeaveRegion, LeaveTypeConfig
import lms.models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)

DEFAULT_LEAVE_TYPES = [
    dict(code="CL", name="Casual Leave", category="GENERAL", annual_allocation=Decimal("12"),
         max_consecutive_days=3, accrual_frequency=AccrualFrequency.MONTHLY, accrual_rate=Decimal("1"),
         region=LeaveRegion.IND, sort_order=1),
    dict(code="PL", name="Privilege Leave", category="GENERAL", annual_allocation=Decimal("18"),
         min_days_notice=7, carry_forward_allowed=True, max_carry_forward_days=Decimal("15"),
         accrual_frequency=AccrualFrequency.MONTHLY, accrual_rate=Decimal("1.5"),
         region=LeaveRegion.IND, sort_order=2),
    dict(code="PTO", name="Planned Time Off", category="GENERAL", annual_allocation=Decimal("15"),
         min_days_notice=7, accrual_frequency=AccrualFrequency.MONTHLY, accrual_rate=Decimal("1.25"),
         region=LeaveRegion.US, sort_order=3),
    dict(code="BL", name="Bereavement Leave", category="SPECIAL", annual_allocation=Decimal("3"),
         allow_half_day=False, region=LeaveRegion.ALL, sort_order=4),
    dict(code="LWP", name="Leave Without Pay", category="UNPAID", is_paid=False,
         allow_negative_balance=True, region=LeaveRegion.ALL, sort_order=5),
    dict(code="COMP", name="Compensatory Off", category="SPECIAL", max_consecutive_days=2,
         region=LeaveRegion.ALL, sort_order=6),
    dict(code="ML", name="Maternity Leave", category="SPECIAL", annual_allocation=Decimal("182"),
         allow_half_day=False, min_days_notice=30, region=LeaveRegion.ALL, sort_order=7),
    dict(code="PTL", name="Paternity Leave", category="SPECIAL", annual_allocation=Decimal("5"),
         allow_half_day=False, region=LeaveRegion.ALL, sort_order=8),
]


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def seed_leave_types(db: Session) -> List[str]:
    """
    Insert any default leave type missing from the catalog.
    Existing codes are left untouched. Returns the codes inserted.
    """
    existing = {code for (code,) in db.query(LeaveTypeConfig.code).all()}
    created = []
    for values in DEFAULT_LEAVE_TYPES:
        if values["code"] in existing:
            continue
        db.add(LeaveTypeConfig(**values))
        created.append(values["code"])
    db.commit()
    if created:
        logger.info("Seeded leave types: %s", ", ".join(created))
    return created


def init_db(db: Session) -> None:
    """
    Create tables and seed the catalog.

    This is a helper function and should NOT be auto-run on startup.
    Call manually when needed for initial setup.
    """
    create_tables()
    seed_leave_types(db)
