"""
Error kinds raised by the leave core.

Every error is an HTTPException so a host API can let it propagate as-is;
error_code is the stable identifier callers should match on.
"""
from typing import Optional
from fastapi import HTTPException, status


class LeaveManagementError(HTTPException):
    error_code = "LEAVE_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.status_code_default, detail=detail)

    def __str__(self) -> str:
        return f"{self.error_code}: {self.detail}"


class NotFoundError(LeaveManagementError):
    error_code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND


class ValidationError(LeaveManagementError):
    error_code = "VALIDATION_ERROR"


class InvalidDateRangeError(LeaveManagementError):
    error_code = "INVALID_DATE_RANGE"

    def __init__(self, detail: str = "Start date must be before or equal to end date"):
        super().__init__(detail)


class OverlappingRequestError(LeaveManagementError):
    error_code = "OVERLAPPING_REQUEST"
    status_code_default = status.HTTP_409_CONFLICT


class InsufficientBalanceError(LeaveManagementError):
    error_code = "INSUFFICIENT_BALANCE"


class NoBalanceRecordError(LeaveManagementError):
    error_code = "NO_BALANCE_RECORD"
    status_code_default = status.HTTP_409_CONFLICT


class InvalidStateError(LeaveManagementError):
    error_code = "INVALID_STATE"


class ForbiddenError(LeaveManagementError):
    error_code = "FORBIDDEN"
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class NoEligibleEmployeesError(LeaveManagementError):
    error_code = "NO_ELIGIBLE_EMPLOYEES"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, detail: str = "No active employees found for the selected criteria"):
        super().__init__(detail)
