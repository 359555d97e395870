"""
Leave models
"""
from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    Numeric,
    Enum as SQLEnum,
    Boolean,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import text
import enum
from lms.db.base import Base


class LeaveStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AccrualFrequency(str, enum.Enum):
    NONE = "NONE"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class LeaveRegion(str, enum.Enum):
    ALL = "ALL"
    IND = "IND"
    US = "US"


class HalfDayType(str, enum.Enum):
    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"


class LeaveTransactionAction(str, enum.Enum):
    RESERVE = "RESERVE"
    COMMIT = "COMMIT"
    RELEASE = "RELEASE"
    REFUND = "REFUND"
    GRANT = "GRANT"
    REVOKE = "REVOKE"
    ALLOCATE = "ALLOCATE"
    CARRY_FORWARD = "CARRY_FORWARD"
    EXPIRE = "EXPIRE"


# Request statuses that block a new request on the same dates
ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)


class LeaveTypeConfig(Base):
    """Leave type catalog entry. Read-only while requests reference it."""
    __tablename__ = "leave_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(10), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False, default="GENERAL")
    description = Column(Text, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=True)
    requires_approval = Column(Boolean, nullable=False, default=True)
    max_consecutive_days = Column(Integer, nullable=True)
    min_days_notice = Column(Integer, nullable=False, default=0)
    allow_half_day = Column(Boolean, nullable=False, default=True)
    allow_negative_balance = Column(Boolean, nullable=False, default=False)
    carry_forward_allowed = Column(Boolean, nullable=False, default=False)
    max_carry_forward_days = Column(Numeric(7, 2), nullable=True)
    accrual_frequency = Column(SQLEnum(AccrualFrequency), nullable=False, default=AccrualFrequency.NONE)
    accrual_rate = Column(Numeric(7, 2), nullable=True)
    annual_allocation = Column(Numeric(7, 2), nullable=False, default=0)
    region = Column(SQLEnum(LeaveRegion), nullable=False, default=LeaveRegion.ALL)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    def applies_to_region(self, region: str) -> bool:
        value = self.region.value if isinstance(self.region, enum.Enum) else self.region
        return value == LeaveRegion.ALL.value or value == region


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type_code = Column(String(10), ForeignKey("leave_types.code"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Numeric(7, 2), nullable=False)  # Supports 0.5 days
    is_half_day = Column(Boolean, nullable=False, default=False)
    half_day_type = Column(SQLEnum(HalfDayType), nullable=True)
    reason = Column(Text, nullable=False, default="")
    contact_during_leave = Column(String(255), nullable=True)
    emergency_contact = Column(String(255), nullable=True)
    status = Column(SQLEnum(LeaveStatus), nullable=False, default=LeaveStatus.PENDING)
    is_draft = Column(Boolean, nullable=False, default=False)  # mirrors status == DRAFT
    balance_year = Column(Integer, nullable=True)  # ledger year reserved against; set on submission
    approved_date = Column(DateTime(timezone=True), nullable=True)
    rejected_date = Column(DateTime(timezone=True), nullable=True)
    cancelled_date = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    employee = relationship("Employee", foreign_keys=[employee_id], back_populates="leave_requests")
    leave_type = relationship("LeaveTypeConfig")
    approvals = relationship(
        "Approval",
        back_populates="leave_request",
        cascade="all, delete-orphan",
        order_by="Approval.level",
    )

    __table_args__ = (
        Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
        CheckConstraint("start_date <= end_date", name="check_start_date_le_end_date"),
    )


class Approval(Base):
    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    level = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    comments = Column(Text, nullable=True)
    approved_date = Column(DateTime(timezone=True), nullable=True)
    rejected_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    leave_request = relationship("LeaveRequest", back_populates="approvals")
    approver = relationship("Employee", foreign_keys=[approver_employee_id])

    __table_args__ = (
        Index("ix_approvals_request_status", "leave_request_id", "status", "is_active"),
    )


class LeaveBalance(Base):
    """
    One row per (employee_id, leave_type_code, year).
    available = allocated + carried_forward - used - pending - expired - encashed.
    Mutated only through leave_balance_service.
    """
    __tablename__ = "leave_balances"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type_code = Column(String(10), ForeignKey("leave_types.code"), nullable=False)
    year = Column(Integer, nullable=False, index=True)
    allocated = Column(Numeric(7, 2), nullable=False, default=0)
    used = Column(Numeric(7, 2), nullable=False, default=0)
    pending = Column(Numeric(7, 2), nullable=False, default=0)
    available = Column(Numeric(7, 2), nullable=False, default=0)
    carried_forward = Column(Numeric(7, 2), nullable=False, default=0)
    expired = Column(Numeric(7, 2), nullable=False, default=0)
    encashed = Column(Numeric(7, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    employee = relationship("Employee", backref="leave_balances")
    leave_type = relationship("LeaveTypeConfig")

    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type_code", "year", name="uq_leave_balances_employee_type_year"),
    )


class LeaveTransaction(Base):
    """Journal of ledger mutations: reserve, commit, release, refund, grant, revoke, allocate, year close."""
    __tablename__ = "leave_transactions"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    leave_type_code = Column(String(10), nullable=False)
    year = Column(Integer, nullable=False, index=True)
    delta_days = Column(Numeric(7, 2), nullable=False)  # + credits available, - debits available
    action = Column(String(30), nullable=False)
    remarks = Column(Text, nullable=True)
    actor_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    employee = relationship("Employee", foreign_keys=[employee_id])
    leave_request = relationship("LeaveRequest", foreign_keys=[leave_request_id])
