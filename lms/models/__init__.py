"""
Database models
"""
from lms.models.employee import Employee, Role, Region, EmploymentType
from lms.models.audit_log import AuditLog
from lms.models.holiday import Holiday
from lms.models.leave import (
    LeaveTypeConfig,
    LeaveRequest,
    Approval,
    LeaveBalance,
    LeaveTransaction,
    LeaveStatus,
    ApprovalStatus,
    AccrualFrequency,
    LeaveRegion,
    HalfDayType,
    LeaveTransactionAction,
    ACTIVE_LEAVE_STATUSES,
)
from lms.models.leave_policy import LeaveProcessHistory

__all__ = [
    "Employee",
    "Role",
    "Region",
    "EmploymentType",
    "AuditLog",
    "Holiday",
    "LeaveTypeConfig",
    "LeaveRequest",
    "Approval",
    "LeaveBalance",
    "LeaveTransaction",
    "LeaveStatus",
    "ApprovalStatus",
    "AccrualFrequency",
    "LeaveRegion",
    "HalfDayType",
    "LeaveTransactionAction",
    "ACTIVE_LEAVE_STATUSES",
    "LeaveProcessHistory",
]
