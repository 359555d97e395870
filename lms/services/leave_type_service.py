"""
Leave type catalog lookups
"""
from typing import List
from sqlalchemy.orm import Session
from lms.core.exceptions import NotFoundError
from lms.models.leave import LeaveTypeConfig, LeaveRegion


def get_leave_type(db: Session, code: str) -> LeaveTypeConfig:
    """
    Fetch a leave type by code

    Raises:
        NotFoundError: If no leave type has this code
    """
    leave_type = db.query(LeaveTypeConfig).filter(LeaveTypeConfig.code == code).first()
    if not leave_type:
        raise NotFoundError(f"Leave type {code} not found")
    return leave_type


def list_leave_types_for_region(db: Session, region: str) -> List[LeaveTypeConfig]:
    """Active leave types available in region (region-specific plus ALL), in display order"""
    return (
        db.query(LeaveTypeConfig)
        .filter(
            LeaveTypeConfig.is_active == True,
            LeaveTypeConfig.region.in_([LeaveRegion.ALL, LeaveRegion(region)]),
        )
        .order_by(LeaveTypeConfig.sort_order, LeaveTypeConfig.code)
        .all()
    )
