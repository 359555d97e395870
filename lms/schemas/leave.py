"""
Leave request, approval and balance schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from lms.models.leave import ApprovalStatus, HalfDayType, LeaveStatus


class LeaveRequestCreate(BaseModel):
    """Input for a new leave request. Date order is checked by the lifecycle service."""
    employee_id: int
    leave_type_code: str = Field(..., min_length=1, max_length=10)
    start_date: date
    end_date: date
    total_days: Optional[Decimal] = Field(None, description="Defaults to the inclusive calendar span")
    is_half_day: bool = False
    half_day_type: Optional[HalfDayType] = None
    reason: str = Field(..., min_length=1)
    contact_during_leave: Optional[str] = None
    emergency_contact: Optional[str] = None
    is_draft: bool = False

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Reason is required")
        return v.strip()


class LeaveRequestUpdate(BaseModel):
    """Partial update of a draft; only fields that are set are applied"""
    leave_type_code: Optional[str] = Field(None, min_length=1, max_length=10)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_days: Optional[Decimal] = None
    is_half_day: bool = False  # applied only when set
    half_day_type: Optional[HalfDayType] = None
    reason: Optional[str] = None
    contact_during_leave: Optional[str] = None
    emergency_contact: Optional[str] = None


class ApprovalOut(BaseModel):
    id: int
    leave_request_id: int
    approver_employee_id: int
    level: int
    status: ApprovalStatus
    comments: Optional[str] = None
    approved_date: Optional[datetime] = None
    rejected_date: Optional[datetime] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestOut(BaseModel):
    id: int
    employee_id: int
    leave_type_code: str
    start_date: date
    end_date: date
    total_days: Decimal
    is_half_day: bool
    half_day_type: Optional[HalfDayType] = None
    reason: str
    contact_during_leave: Optional[str] = None
    emergency_contact: Optional[str] = None
    status: LeaveStatus
    is_draft: bool
    balance_year: Optional[int] = None
    approved_date: Optional[datetime] = None
    rejected_date: Optional[datetime] = None
    cancelled_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    remarks: Optional[str] = None
    approvals: List[ApprovalOut] = []

    model_config = ConfigDict(from_attributes=True)


class LeaveBalanceOut(BaseModel):
    employee_id: int
    leave_type_code: str
    year: int
    allocated: Decimal
    used: Decimal
    pending: Decimal
    available: Decimal
    carried_forward: Decimal
    expired: Decimal
    encashed: Decimal

    model_config = ConfigDict(from_attributes=True)


class LeaveTransactionOut(BaseModel):
    id: int
    employee_id: int
    leave_request_id: Optional[int] = None
    leave_type_code: str
    year: int
    delta_days: Decimal
    action: str
    remarks: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel):
    """One page of ORM rows plus paging metadata"""
    items: List[Any]
    total: int
    page: int
    limit: int
    pages: int

    model_config = ConfigDict(arbitrary_types_allowed=True)


class BulkDecisionResult(BaseModel):
    """Outcome of a bulk approve/reject; one failing request does not stop the rest"""
    processed: List[int] = []
    errors: List[str] = []
