"""
Leave policy processing history
"""
from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, Index
from lms.db.base import Base


class LeaveProcessHistory(Base):
    """
    Append-only record of a bulk credit run.
    region/employment_type are empty for special-leave runs that span cohorts.
    """
    __tablename__ = "leave_process_history"

    id = Column(Integer, primary_key=True, index=True)
    region = Column(String(10), nullable=True)
    employment_type = Column(String(20), nullable=True)
    process_month = Column(Integer, nullable=False)
    process_year = Column(Integer, nullable=False)
    leave_type_code = Column(String(10), nullable=False)
    days_processed = Column(Numeric(7, 2), nullable=False)  # negative for removals
    employees_count = Column(Integer, nullable=False, default=0)
    processed_by = Column(String(100), nullable=False)
    comments = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_leave_process_history_cohort", "region", "employment_type", "process_month", "process_year"),
    )
