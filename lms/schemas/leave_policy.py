"""
Leave policy processing schemas
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from lms.models.employee import EmploymentType, Region


class SpecialLeaveAction(str, enum.Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"


class ProcessLeavesInput(BaseModel):
    """Monthly/periodic credit for a (region, employment type) cohort"""
    region: Region
    employment_type: EmploymentType
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    casual_leave: Optional[Decimal] = Field(None, ge=0)
    privilege_leave: Optional[Decimal] = Field(None, ge=0)
    planned_time_off: Optional[Decimal] = Field(None, ge=0)
    bereavement_leave: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def at_least_one_amount(self) -> "ProcessLeavesInput":
        amounts = (self.casual_leave, self.privilege_leave, self.planned_time_off, self.bereavement_leave)
        if all(amount is None for amount in amounts):
            raise ValueError("At least one leave type value is required")
        return self


class ProcessedLeaveType(BaseModel):
    leave_type_code: str
    days: Decimal


class ProcessLeavesResult(BaseModel):
    message: str
    region: str
    employment_type: str
    month: int
    year: int
    employees_processed: int
    leave_types: List[ProcessedLeaveType] = []
    already_processed: bool = False


class SpecialLeaveInput(BaseModel):
    """Single-employee grant or removal"""
    employee_id: int
    leave_type_code: str = Field(..., min_length=1, max_length=10)
    days: Decimal = Field(..., gt=0)
    action: SpecialLeaveAction
    comments: str

    @field_validator("comments")
    @classmethod
    def comments_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Comments are required")
        return v.strip()


class BulkSpecialLeaveInput(BaseModel):
    employee_ids: List[int] = Field(..., min_length=1)
    leave_type_code: str = Field(..., min_length=1, max_length=10)
    days: Decimal = Field(..., gt=0)
    action: SpecialLeaveAction
    comments: str

    @field_validator("comments")
    @classmethod
    def comments_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Comments are required")
        return v.strip()


class SpecialLeaveResult(BaseModel):
    message: str
    employee_id: int
    leave_type_code: str
    days: Decimal
    action: SpecialLeaveAction
    available: Decimal


class BulkSpecialLeaveResult(BaseModel):
    """Counts plus per-employee detail lines"""
    message: str
    processed: int
    errors: int
    warnings: int
    processed_employees: List[str] = []
    error_messages: List[str] = []
    warning_messages: List[str] = []


class ProcessHistoryGroup(BaseModel):
    """History rows of one cohort run, grouped by region, employment type and period"""
    region: Optional[str] = None
    employment_type: Optional[str] = None
    process_month: int
    process_year: int
    processed_at: datetime
    processed_by: str
    leave_types: Dict[str, Decimal] = {}
    employees_count: int = 0
