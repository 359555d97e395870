"""
Leave policy processing - cohort credits and special leave grants/removals

Cohort runs credit every active employee of a (region, employment type)
pair in one transaction and append a history row per leave type. Runs are
not blocked when the same period was already processed; the result flags
it so an operator can spot a double credit.
"""
import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from lms.core.exceptions import LeaveManagementError, NoEligibleEmployeesError, NotFoundError, ValidationError
from lms.models.employee import Employee
from lms.models.leave import LeaveTypeConfig
from lms.models.leave_policy import LeaveProcessHistory
from lms.schemas.leave_policy import (
    BulkSpecialLeaveInput,
    BulkSpecialLeaveResult,
    ProcessedLeaveType,
    ProcessHistoryGroup,
    ProcessLeavesInput,
    ProcessLeavesResult,
    SpecialLeaveAction,
    SpecialLeaveInput,
    SpecialLeaveResult,
)
from lms.services import leave_balance_service as ledger
from lms.services.audit_service import AuditAction, AuditEntity, balance_entity_id, log_audit
from lms.services.employee_service import get_active_employees, get_cohort, get_employee
from lms.services.leave_type_service import get_leave_type
from lms.utils.datetime_utils import ensure_utc, now_utc

logger = logging.getLogger(__name__)

# ProcessLeavesInput field -> leave type code
LEAVE_CODE_BY_FIELD = OrderedDict([
    ("casual_leave", "CL"),
    ("privilege_leave", "PL"),
    ("planned_time_off", "PTO"),
    ("bereavement_leave", "BL"),
])

# Leave types restricted to one gender
GENDER_RESTRICTED_LEAVE = {
    "ML": ("F", "Maternity leave is only applicable to female employees"),
    "PTL": ("M", "Paternity leave is only applicable to male employees"),
}


def check_processing_exists(
    db: Session,
    region: str,
    employment_type: str,
    month: int,
    year: int,
) -> Dict[str, Any]:
    """Whether a cohort run was already recorded for the period, with its history rows"""
    rows = (
        db.query(LeaveProcessHistory)
        .filter(
            LeaveProcessHistory.region == region,
            LeaveProcessHistory.employment_type == employment_type,
            LeaveProcessHistory.process_month == month,
            LeaveProcessHistory.process_year == year,
        )
        .order_by(LeaveProcessHistory.processed_at.desc())
        .all()
    )
    return {"exists": bool(rows), "history": rows}


def process_leaves(
    db: Session,
    data: ProcessLeavesInput,
    processed_by: str,
    today: Optional[date] = None,
) -> ProcessLeavesResult:
    """
    Credit the given amounts to every active employee of the cohort

    Args:
        db: Database session
        data: Cohort, month and per-leave-type amounts (None or 0 skips a type)
        processed_by: Operator recorded on history and audit
        today: Reference date; credits land on the balance rows of today.year

    Returns:
        ProcessLeavesResult, with already_processed set if the period had a prior run

    Raises:
        NoEligibleEmployeesError: The cohort has no active employees
        NotFoundError: A credited leave type is not in the catalog
    """
    today = today or date.today()
    balance_year = today.year
    region = data.region.value
    employment_type = data.employment_type.value

    already_processed = check_processing_exists(db, region, employment_type, data.month, data.year)["exists"]
    employees = get_cohort(db, region, employment_type)
    if not employees:
        raise NoEligibleEmployeesError()

    credited: List[ProcessedLeaveType] = []
    try:
        for field, code in LEAVE_CODE_BY_FIELD.items():
            amount = getattr(data, field)
            if amount is None or amount <= 0:
                continue
            get_leave_type(db, code)
            for employee in employees:
                ledger.grant(
                    db, employee.id, code, balance_year, amount,
                    remarks=f"Policy credit {data.month}/{data.year} by {processed_by}",
                )
            db.add(LeaveProcessHistory(
                region=region,
                employment_type=employment_type,
                process_month=data.month,
                process_year=data.year,
                leave_type_code=code,
                days_processed=amount,
                employees_count=len(employees),
                processed_by=processed_by,
                processed_at=now_utc(),
            ))
            credited.append(ProcessedLeaveType(leave_type_code=code, days=amount))
        db.commit()
    except Exception:
        db.rollback()
        raise

    if already_processed:
        logger.warning(
            "Leave policy for %s-%s %s/%s was already processed; credited again by %s",
            region, employment_type, data.month, data.year, processed_by,
        )
    logger.info(
        "Processed leave policy %s-%s %s/%s for %d employees: %s",
        region, employment_type, data.month, data.year, len(employees),
        ", ".join(f"{item.leave_type_code}={item.days}" for item in credited) or "nothing to credit",
    )
    log_audit(
        db,
        actor_id=processed_by,
        action=AuditAction.LEAVE_BALANCE_BULK_PROCESSED,
        entity=AuditEntity.LEAVE_BALANCE,
        entity_id=f"BULK_{region}_{employment_type}_{data.year}_{data.month}",
        description=f"Leave policy processed for {len(employees)} {region} {employment_type} employees",
        new_values={
            "region": region,
            "employment_type": employment_type,
            "month": data.month,
            "year": data.year,
            "balance_year": balance_year,
            "employees": len(employees),
            "leave_types": [item.model_dump() for item in credited],
            "already_processed": already_processed,
        },
    )
    return ProcessLeavesResult(
        message=f"Leave policy processed successfully for {len(employees)} employees",
        region=region,
        employment_type=employment_type,
        month=data.month,
        year=data.year,
        employees_processed=len(employees),
        leave_types=credited,
        already_processed=already_processed,
    )


def get_process_history(db: Session, limit: int = 50) -> List[ProcessHistoryGroup]:
    """
    Cohort runs newest first, one group per region / employment type / month / year
    listing the days credited per leave type.
    """
    rows = (
        db.query(LeaveProcessHistory)
        .order_by(LeaveProcessHistory.processed_at.desc(), LeaveProcessHistory.id.desc())
        .all()
    )
    groups: "OrderedDict[tuple, ProcessHistoryGroup]" = OrderedDict()
    for row in rows:
        key = (row.region, row.employment_type, row.process_month, row.process_year)
        group = groups.get(key)
        if group is None:
            if len(groups) >= limit:
                continue
            group = ProcessHistoryGroup(
                region=row.region,
                employment_type=row.employment_type,
                process_month=row.process_month,
                process_year=row.process_year,
                processed_at=ensure_utc(row.processed_at),
                processed_by=row.processed_by,
                employees_count=row.employees_count,
            )
            groups[key] = group
        group.leave_types[row.leave_type_code] = (
            group.leave_types.get(row.leave_type_code, Decimal("0")) + Decimal(str(row.days_processed))
        )
        group.employees_count = max(group.employees_count, row.employees_count)
    return list(groups.values())


def special_leave_eligibility_error(employee: Employee, leave_type: LeaveTypeConfig) -> Optional[str]:
    """Why employee cannot hold leave_type, or None if they can"""
    if not leave_type.applies_to_region(employee.region):
        return f"{leave_type.name} is not applicable to {employee.region} region"
    restriction = GENDER_RESTRICTED_LEAVE.get(leave_type.code)
    if restriction and (employee.gender or "").upper() != restriction[0]:
        return restriction[1]
    return None


def _signed_days(action: SpecialLeaveAction, days: Decimal) -> Decimal:
    return days if action == SpecialLeaveAction.ADD else -days


def _apply_special_leave(
    db: Session,
    employee: Employee,
    leave_type_code: str,
    year: int,
    days: Decimal,
    action: SpecialLeaveAction,
    comments: str,
):
    remarks = f"{action.value}: {comments}"
    if action == SpecialLeaveAction.ADD:
        return ledger.grant(db, employee.id, leave_type_code, year, days, remarks=remarks)
    return ledger.revoke(db, employee.id, leave_type_code, year, days, remarks=remarks)


def process_special_leave(
    db: Session,
    data: SpecialLeaveInput,
    performed_by: str,
    today: Optional[date] = None,
) -> SpecialLeaveResult:
    """
    Grant or remove days of one leave type for one employee

    Raises:
        NotFoundError: Unknown employee or leave type
        ValidationError: Inactive employee, or leave type not applicable to them
        NoBalanceRecordError / InsufficientBalanceError: Removal the balance cannot cover
    """
    today = today or date.today()
    year = today.year

    employee = get_employee(db, data.employee_id, detail="Employee not found")
    if not employee.is_active:
        raise ValidationError("Employee is not active")
    leave_type = get_leave_type(db, data.leave_type_code)
    reason = special_leave_eligibility_error(employee, leave_type)
    if reason:
        raise ValidationError(reason)

    before = ledger.get_balance(db, employee.id, leave_type.code, year)
    old_values = (
        {"allocated": before.allocated, "available": before.available} if before is not None else None
    )
    try:
        _apply_special_leave(db, employee, leave_type.code, year, data.days, data.action, data.comments)
        db.add(LeaveProcessHistory(
            region=employee.region,
            employment_type=employee.employment_type,
            process_month=today.month,
            process_year=year,
            leave_type_code=leave_type.code,
            days_processed=_signed_days(data.action, data.days),
            employees_count=1,
            processed_by=performed_by,
            comments=f"{data.action.value}: {data.comments}",
            processed_at=now_utc(),
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    balance = ledger.get_balance(db, employee.id, leave_type.code, year)
    verb = "added" if data.action == SpecialLeaveAction.ADD else "removed"
    preposition = "to" if data.action == SpecialLeaveAction.ADD else "from"
    message = f"Successfully {verb} {data.days} days of {leave_type.name} {preposition} {employee.full_name}"
    logger.info("%s (by %s)", message, performed_by)
    log_audit(
        db,
        actor_id=performed_by,
        action=(
            AuditAction.LEAVE_BALANCE_ALLOCATED
            if data.action == SpecialLeaveAction.ADD
            else AuditAction.LEAVE_BALANCE_ADJUSTED
        ),
        entity=AuditEntity.LEAVE_BALANCE,
        entity_id=balance_entity_id(employee.id, leave_type.code, year),
        description=f"{data.action.value}: {data.comments}",
        old_values=old_values,
        new_values={"allocated": balance.allocated, "available": balance.available, "days": data.days},
    )
    return SpecialLeaveResult(
        message=message,
        employee_id=employee.id,
        leave_type_code=leave_type.code,
        days=data.days,
        action=data.action,
        available=balance.available,
    )


def process_special_leave_bulk(
    db: Session,
    data: BulkSpecialLeaveInput,
    performed_by: str,
    today: Optional[date] = None,
) -> BulkSpecialLeaveResult:
    """
    Grant or remove days for several employees.

    Each employee is applied inside its own savepoint: an employee whose
    balance cannot cover a removal, or who is not eligible, is reported and
    skipped while the others still commit. Ids that are unknown or inactive
    become warnings.

    Raises:
        NotFoundError: None of the ids is an active employee, or unknown leave type
    """
    today = today or date.today()
    year = today.year

    employees = get_active_employees(db, data.employee_ids)
    if not employees:
        raise NotFoundError("No active employees found with the provided IDs")
    leave_type = get_leave_type(db, data.leave_type_code)

    found_ids = {employee.id for employee in employees}
    warning_messages = [
        f"Employee {employee_id}: not found or inactive"
        for employee_id in dict.fromkeys(data.employee_ids)
        if employee_id not in found_ids
    ]
    processed_employees: List[str] = []
    error_messages: List[str] = []
    applied: List[Employee] = []

    try:
        for employee in employees:
            label = f"{employee.full_name} ({employee.emp_code})"
            reason = special_leave_eligibility_error(employee, leave_type)
            if reason:
                error_messages.append(f"{label}: {reason}")
                continue
            try:
                with db.begin_nested():
                    _apply_special_leave(
                        db, employee, leave_type.code, year, data.days, data.action, data.comments,
                    )
            except LeaveManagementError as exc:
                error_messages.append(f"{label}: {exc.detail}")
                continue
            processed_employees.append(label)
            applied.append(employee)

        db.add(LeaveProcessHistory(
            region=None,
            employment_type=None,
            process_month=today.month,
            process_year=year,
            leave_type_code=leave_type.code,
            days_processed=_signed_days(data.action, data.days),
            employees_count=len(applied),
            processed_by=performed_by,
            comments=(
                f"BULK {data.action.value}: {data.comments} - "
                f"Processed: {len(applied)}, Errors: {len(error_messages)}"
            ),
            processed_at=now_utc(),
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Bulk %s of %s %s days by %s: %d processed, %d errors, %d warnings",
        data.action.value, leave_type.code, data.days, performed_by,
        len(applied), len(error_messages), len(warning_messages),
    )
    audit_action = (
        AuditAction.LEAVE_BALANCE_ALLOCATED
        if data.action == SpecialLeaveAction.ADD
        else AuditAction.LEAVE_BALANCE_ADJUSTED
    )
    for employee in applied:
        log_audit(
            db,
            actor_id=performed_by,
            action=audit_action,
            entity=AuditEntity.LEAVE_BALANCE,
            entity_id=balance_entity_id(employee.id, leave_type.code, year),
            description=f"BULK {data.action.value}: {data.comments}",
            new_values={"days": _signed_days(data.action, data.days)},
        )

    return BulkSpecialLeaveResult(
        message=f"Bulk {data.action.value.lower()} completed for {len(applied)} employees",
        processed=len(applied),
        errors=len(error_messages),
        warnings=len(warning_messages),
        processed_employees=processed_employees,
        error_messages=error_messages,
        warning_messages=warning_messages,
    )
