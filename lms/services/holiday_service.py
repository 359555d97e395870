"""
Holiday calendar lookups for working-day counts
"""
from datetime import date
from typing import List
from sqlalchemy.orm import Session
from lms.models.holiday import Holiday


def list_holidays_between(db: Session, start_date: date, end_date: date, region: str) -> List[date]:
    """Active holiday dates for region within [start_date, end_date]"""
    rows = (
        db.query(Holiday.date)
        .filter(
            Holiday.region == region,
            Holiday.is_active == True,
            Holiday.date >= start_date,
            Holiday.date <= end_date,
        )
        .order_by(Holiday.date)
        .all()
    )
    return [row[0] for row in rows]
