"""
Audit log model
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from lms.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False, index=True)  # e.g. LEAVE_APPLIED, LEAVE_BALANCE_ADJUSTED
    entity = Column(String(50), nullable=False)  # e.g. LEAVE_REQUEST, LEAVE_BALANCE
    entity_id = Column(String(100), nullable=False)
    actor_id = Column(String(100), nullable=True)  # employee id, or email for admin tooling
    description = Column(Text, nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    leave_request_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
