"""
Leave service - request lifecycle (draft, submit, update, cancel, delete)

State machine:
    DRAFT -> PENDING (submit)
    PENDING -> APPROVED | REJECTED (approval_service) | CANCELLED
    APPROVED -> CANCELLED

Every status change is a compare-and-set UPDATE on (id, expected status),
so of two concurrent transitions on the same request exactly one wins and
the other gets InvalidStateError. Ledger changes ride in the same
transaction; audit entries and notifications follow the commit.
"""
import logging
import math
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from lms.core.exceptions import (
    ForbiddenError,
    InsufficientBalanceError,
    InvalidDateRangeError,
    InvalidStateError,
    NoBalanceRecordError,
    NotFoundError,
    OverlappingRequestError,
    ValidationError,
)
from lms.models.employee import Employee, Role
from lms.models.leave import (
    ACTIVE_LEAVE_STATUSES,
    Approval,
    ApprovalStatus,
    LeaveRequest,
    LeaveStatus,
    LeaveTypeConfig,
)
from lms.schemas.leave import LeaveRequestCreate, LeaveRequestUpdate, Page
from lms.services import leave_balance_service as ledger
from lms.services.audit_service import AuditAction, AuditEntity, log_audit
from lms.services.employee_service import get_employee, lock_employee
from lms.services.holiday_service import list_holidays_between
from lms.services.leave_type_service import get_leave_type
from lms.services.notification_service import NotificationService, notification_service
from lms.utils.date_utils import calculate_business_days, calculate_days, is_half_day_multiple
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)

# Roles that may read or cancel requests of other employees
PRIVILEGED_ROLES = frozenset({Role.HR.value, Role.ADMIN.value})


def _snapshot(leave: LeaveRequest) -> Dict[str, Any]:
    return {
        "leave_type_code": leave.leave_type_code,
        "start_date": leave.start_date,
        "end_date": leave.end_date,
        "total_days": leave.total_days,
        "is_half_day": leave.is_half_day,
        "status": leave.status,
        "reason": leave.reason,
    }


def resolve_total_days(
    start_date: date,
    end_date: date,
    is_half_day: bool = False,
    total_days: Optional[Decimal] = None,
) -> Decimal:
    """
    Days to charge for a request.

    Without an explicit total the inclusive calendar span is used (0.5 for a
    single-day half-day). An explicit total must be positive, in half-day
    steps, and no larger than the calendar span.
    """
    if start_date > end_date:
        raise InvalidDateRangeError()
    if total_days is None:
        return calculate_days(start_date, end_date, is_half_day)

    value = Decimal(str(total_days))
    if value <= 0:
        raise ValidationError("Total days must be greater than 0")
    if not is_half_day_multiple(value):
        raise ValidationError("Total days must be in steps of 0.5")
    span = calculate_days(start_date, end_date)
    if value > span:
        raise ValidationError(f"Total days ({value}) cannot exceed the {span} calendar days in the date range")
    return value


def validate_leave_type_rules(
    leave_type: LeaveTypeConfig,
    employee: Employee,
    start_date: date,
    is_half_day: bool,
    total_days: Decimal,
    enforce_notice: bool = True,
    today: Optional[date] = None,
) -> None:
    """
    Catalog rules for a request.

    Raises:
        ValidationError: inactive type, wrong region, half day not allowed,
            too many consecutive days, or not enough notice
    """
    if not leave_type.is_active:
        raise ValidationError(f"Leave type {leave_type.code} is not active")
    if not leave_type.applies_to_region(employee.region):
        raise ValidationError(f"{leave_type.name} is not available in region {employee.region}")
    if is_half_day and not leave_type.allow_half_day:
        raise ValidationError(f"{leave_type.name} cannot be taken as a half day")
    if leave_type.max_consecutive_days and total_days > leave_type.max_consecutive_days:
        raise ValidationError(
            f"{leave_type.name} allows at most {leave_type.max_consecutive_days} consecutive days"
        )
    if enforce_notice and leave_type.min_days_notice:
        today = today or date.today()
        notice = (start_date - today).days
        if notice < leave_type.min_days_notice:
            raise ValidationError(
                f"{leave_type.name} requires at least {leave_type.min_days_notice} days notice"
            )


def validate_overlap(
    db: Session,
    employee_id: int,
    start_date: date,
    end_date: date,
    exclude_leave_id: Optional[int] = None,
) -> None:
    """
    Reject a range intersecting any PENDING or APPROVED request of the employee.

    Raises:
        OverlappingRequestError: If an active request shares a day with the range
    """
    query = db.query(LeaveRequest).filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        LeaveRequest.end_date >= start_date,
        LeaveRequest.start_date <= end_date,
    )
    if exclude_leave_id:
        query = query.filter(LeaveRequest.id != exclude_leave_id)
    if query.first():
        raise OverlappingRequestError("You already have a leave request for this date range")


def check_balance(
    db: Session,
    employee_id: int,
    leave_type: LeaveTypeConfig,
    year: int,
    total_days: Decimal,
) -> None:
    """Pre-check a submission against the ledger before anything is written"""
    balance = ledger.get_balance(db, employee_id, leave_type.code, year)
    if balance is None:
        raise NoBalanceRecordError("No leave balance found for this leave type")
    if not leave_type.allow_negative_balance and Decimal(str(balance.available)) < total_days:
        raise InsufficientBalanceError(
            f"Insufficient leave balance. Available: {balance.available} days, Requested: {total_days} days"
        )


def load_leave_request(db: Session, request_id: int, lock: bool = False) -> LeaveRequest:
    """
    Fetch a leave request, optionally FOR UPDATE

    Raises:
        NotFoundError: If the request does not exist
    """
    query = db.query(LeaveRequest).filter(LeaveRequest.id == request_id)
    if lock:
        query = query.with_for_update()
    leave = query.first()
    if not leave:
        raise NotFoundError("Leave request not found")
    return leave


def transition_status(
    db: Session,
    request_id: int,
    from_statuses: Iterable[LeaveStatus],
    to_status: LeaveStatus,
    detail: str = "Leave request status has changed",
    **values: Any,
) -> None:
    """
    Compare-and-set a request's status.

    Raises:
        InvalidStateError: If the request is no longer in one of from_statuses
    """
    values.update(status=to_status, is_draft=to_status == LeaveStatus.DRAFT)
    updated = (
        db.query(LeaveRequest)
        .filter(LeaveRequest.id == request_id, LeaveRequest.status.in_(list(from_statuses)))
        .update(values, synchronize_session="fetch")
    )
    if updated != 1:
        raise InvalidStateError(detail)


def supersede_pending_approvals(db: Session, request_id: int) -> int:
    """Deactivate approvals still waiting on a request that has reached a terminal status"""
    return (
        db.query(Approval)
        .filter(
            Approval.leave_request_id == request_id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.is_active == True,
        )
        .update({"is_active": False}, synchronize_session="fetch")
    )


def balance_year(leave: LeaveRequest) -> int:
    """Ledger year a submitted request was reserved against"""
    return leave.balance_year if leave.balance_year is not None else leave.start_date.year


def _route_for_approval(db: Session, leave: LeaveRequest, employee: Employee) -> Optional[Approval]:
    if not employee.manager_id:
        logger.warning(
            "Employee %s has no manager; leave request %s awaits an admin decision",
            employee.id, leave.id,
        )
        return None
    approval = Approval(
        leave_request_id=leave.id,
        approver_employee_id=employee.manager_id,
        level=1,
        status=ApprovalStatus.PENDING,
        is_active=True,
    )
    db.add(approval)
    db.flush()
    return approval


def _notify_submitted(notifier: NotificationService, employee: Employee, leave: LeaveRequest) -> None:
    manager = employee.manager
    if manager is None:
        return
    notifier.leave_submitted(
        manager.email,
        employee.full_name,
        leave.leave_type.name,
        leave.start_date,
        leave.end_date,
        leave.total_days,
    )


def _submitted_values(leave: LeaveRequest) -> Dict[str, Any]:
    return {
        "leave_type_code": leave.leave_type_code,
        "start_date": leave.start_date,
        "end_date": leave.end_date,
        "total_days": leave.total_days,
        "status": leave.status,
        "balance_year": leave.balance_year,
    }


def create_leave_request(
    db: Session,
    data: LeaveRequestCreate,
    notifier: Optional[NotificationService] = None,
    today: Optional[date] = None,
) -> LeaveRequest:
    """
    Create a leave request, either as a DRAFT or submitted straight to PENDING.

    A draft is only stored. A submission reserves the days on the ledger,
    routes the request to the employee's manager, then notifies and audits.

    Args:
        db: Database session
        data: Request fields
        notifier: Notification service (defaults to the module instance)
        today: Reference date for notice rules and the ledger year

    Returns:
        The stored LeaveRequest

    Raises:
        NotFoundError: Unknown employee or leave type
        InvalidDateRangeError: start_date after end_date
        ValidationError: Catalog rule or total_days violation
        NoBalanceRecordError / InsufficientBalanceError: Ledger cannot cover the request
        OverlappingRequestError: Range intersects an active request
    """
    notifier = notifier or notification_service
    today = today or date.today()

    employee = get_employee(db, data.employee_id)
    leave_type = get_leave_type(db, data.leave_type_code)
    total_days = resolve_total_days(data.start_date, data.end_date, data.is_half_day, data.total_days)
    validate_leave_type_rules(
        leave_type, employee, data.start_date, data.is_half_day, total_days,
        enforce_notice=not data.is_draft, today=today,
    )

    fields = dict(
        employee_id=employee.id,
        leave_type_code=leave_type.code,
        start_date=data.start_date,
        end_date=data.end_date,
        total_days=total_days,
        is_half_day=data.is_half_day,
        half_day_type=data.half_day_type if data.is_half_day else None,
        reason=data.reason,
        contact_during_leave=data.contact_during_leave,
        emergency_contact=data.emergency_contact,
    )

    if data.is_draft:
        leave = LeaveRequest(status=LeaveStatus.DRAFT, is_draft=True, **fields)
        db.add(leave)
        db.commit()
        db.refresh(leave)
        logger.info("Draft leave request %s saved for employee %s", leave.id, employee.id)
        return leave

    year = today.year
    try:
        lock_employee(db, employee.id)
        check_balance(db, employee.id, leave_type, year, total_days)
        validate_overlap(db, employee.id, data.start_date, data.end_date)

        leave = LeaveRequest(status=LeaveStatus.PENDING, is_draft=False, balance_year=year, **fields)
        db.add(leave)
        db.flush()
        ledger.reserve(
            db, employee.id, leave_type.code, year, total_days,
            leave_request_id=leave.id, actor_id=employee.id,
        )
        _route_for_approval(db, leave, employee)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info(
        "Leave request %s submitted by employee %s: %s %s days (%s to %s)",
        leave.id, employee.id, leave_type.code, total_days, leave.start_date, leave.end_date,
    )
    _notify_submitted(notifier, employee, leave)
    log_audit(
        db,
        actor_id=employee.id,
        action=AuditAction.LEAVE_APPLIED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"{employee.full_name} applied for {total_days} days of {leave_type.name}",
        new_values=_submitted_values(leave),
        leave_request_id=leave.id,
    )
    return leave


def submit_draft(
    db: Session,
    request_id: int,
    employee_id: int,
    notifier: Optional[NotificationService] = None,
    today: Optional[date] = None,
) -> LeaveRequest:
    """
    Submit a DRAFT for approval. Only the owner may submit, and a draft is
    submitted at most once even under concurrent calls.
    """
    notifier = notifier or notification_service
    today = today or date.today()

    leave = load_leave_request(db, request_id)
    if leave.employee_id != employee_id:
        raise ForbiddenError()
    if leave.status != LeaveStatus.DRAFT:
        raise InvalidStateError("Leave request is already submitted")

    employee = get_employee(db, employee_id)
    leave_type = get_leave_type(db, leave.leave_type_code)
    total_days = Decimal(str(leave.total_days))
    validate_leave_type_rules(
        leave_type, employee, leave.start_date, leave.is_half_day, total_days, today=today,
    )

    year = today.year
    try:
        lock_employee(db, employee_id)
        check_balance(db, employee_id, leave_type, year, total_days)
        validate_overlap(db, employee_id, leave.start_date, leave.end_date, exclude_leave_id=leave.id)
        transition_status(
            db, leave.id, [LeaveStatus.DRAFT], LeaveStatus.PENDING,
            detail="Leave request is already submitted",
            balance_year=year,
        )
        ledger.reserve(
            db, employee_id, leave_type.code, year, total_days,
            leave_request_id=leave.id, actor_id=employee_id,
        )
        _route_for_approval(db, leave, employee)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info("Draft leave request %s submitted by employee %s", leave.id, employee_id)
    _notify_submitted(notifier, employee, leave)
    log_audit(
        db,
        actor_id=employee_id,
        action=AuditAction.LEAVE_SUBMITTED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"{employee.full_name} submitted a draft for {total_days} days of {leave_type.name}",
        old_values={"status": LeaveStatus.DRAFT},
        new_values=_submitted_values(leave),
        leave_request_id=leave.id,
    )
    return leave


def update_leave_request(
    db: Session,
    request_id: int,
    employee_id: int,
    data: LeaveRequestUpdate,
) -> LeaveRequest:
    """
    Patch a DRAFT. Submitted requests are immutable here.

    total_days is recomputed when dates or the half-day flag change, unless
    the patch sets total_days itself.
    """
    leave = load_leave_request(db, request_id)
    if leave.employee_id != employee_id:
        raise ForbiddenError()
    if leave.status != LeaveStatus.DRAFT:
        raise InvalidStateError("Cannot update submitted leave request")

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return leave

    employee = get_employee(db, employee_id)
    leave_type_code = changes.get("leave_type_code") or leave.leave_type_code
    leave_type = get_leave_type(db, leave_type_code)
    start_date = changes.get("start_date") or leave.start_date
    end_date = changes.get("end_date") or leave.end_date
    is_half_day = changes.get("is_half_day", leave.is_half_day)

    if start_date > end_date:
        raise InvalidDateRangeError()
    if "total_days" in changes and changes["total_days"] is not None:
        total_days = resolve_total_days(start_date, end_date, is_half_day, changes["total_days"])
    elif {"start_date", "end_date", "is_half_day"} & changes.keys():
        total_days = calculate_days(start_date, end_date, is_half_day)
    else:
        total_days = Decimal(str(leave.total_days))
    validate_leave_type_rules(leave_type, employee, start_date, is_half_day, total_days, enforce_notice=False)

    old_values = _snapshot(leave)
    leave.leave_type_code = leave_type.code
    leave.start_date = start_date
    leave.end_date = end_date
    leave.is_half_day = is_half_day
    leave.total_days = total_days
    for field in ("half_day_type", "reason", "contact_during_leave", "emergency_contact"):
        if field in changes:
            setattr(leave, field, changes[field])
    if not is_half_day:
        leave.half_day_type = None

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)

    log_audit(
        db,
        actor_id=employee_id,
        action=AuditAction.LEAVE_UPDATED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"Draft leave request {leave.id} updated",
        old_values=old_values,
        new_values=_snapshot(leave),
        leave_request_id=leave.id,
    )
    return leave


def cancel_leave_request(
    db: Session,
    request_id: int,
    actor_id: int,
    reason: Optional[str] = None,
    notifier: Optional[NotificationService] = None,
) -> LeaveRequest:
    """
    Cancel a PENDING or APPROVED request.

    The owner or an admin may cancel. A pending request releases its
    reservation; an approved one refunds its used days.
    """
    notifier = notifier or notification_service

    actor = get_employee(db, actor_id)
    leave = load_leave_request(db, request_id)
    if leave.employee_id != actor.id and not actor.is_admin:
        raise ForbiddenError()

    previous_status = leave.status
    if previous_status not in ACTIVE_LEAVE_STATUSES:
        raise InvalidStateError("Cannot cancel this leave request")

    year = balance_year(leave)
    try:
        transition_status(
            db, leave.id, [previous_status], LeaveStatus.CANCELLED,
            detail="Cannot cancel this leave request",
            cancelled_date=now_utc(),
            remarks=reason,
        )
        if previous_status == LeaveStatus.PENDING:
            ledger.release(
                db, leave.employee_id, leave.leave_type_code, year, leave.total_days,
                leave_request_id=leave.id, actor_id=actor.id,
            )
            supersede_pending_approvals(db, leave.id)
        else:
            ledger.refund_used(
                db, leave.employee_id, leave.leave_type_code, year, leave.total_days,
                leave_request_id=leave.id, actor_id=actor.id,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info(
        "Leave request %s cancelled by %s (was %s)",
        leave.id, actor.id, previous_status.value,
    )
    employee = leave.employee
    if employee.manager is not None:
        notifier.leave_cancelled(employee.manager.email, employee.full_name, leave.leave_type.name)
    log_audit(
        db,
        actor_id=actor.id,
        action=AuditAction.LEAVE_CANCELLED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"Leave request {leave.id} cancelled",
        old_values={"status": previous_status},
        new_values={"status": leave.status, "remarks": reason},
        leave_request_id=leave.id,
    )
    return leave


def delete_leave_request(db: Session, request_id: int, employee_id: int) -> Dict[str, str]:
    """Delete a DRAFT owned by employee_id"""
    leave = load_leave_request(db, request_id)
    if leave.employee_id != employee_id:
        raise ForbiddenError()
    if leave.status != LeaveStatus.DRAFT:
        raise InvalidStateError("Cannot delete submitted leave request")

    old_values = _snapshot(leave)
    try:
        deleted = (
            db.query(LeaveRequest)
            .filter(LeaveRequest.id == request_id, LeaveRequest.status == LeaveStatus.DRAFT)
            .delete(synchronize_session="fetch")
        )
        if deleted != 1:
            raise InvalidStateError("Cannot delete submitted leave request")
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_audit(
        db,
        actor_id=employee_id,
        action=AuditAction.LEAVE_DELETED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=request_id,
        description=f"Draft leave request {request_id} deleted",
        old_values=old_values,
    )
    return {"message": "Leave request deleted successfully"}


def get_leave_request(db: Session, request_id: int, actor_id: Optional[int] = None) -> LeaveRequest:
    """
    Fetch a request with its approvals. With actor_id, only the owner,
    HR or an admin may read it.
    """
    leave = (
        db.query(LeaveRequest)
        .options(joinedload(LeaveRequest.approvals), joinedload(LeaveRequest.leave_type))
        .filter(LeaveRequest.id == request_id)
        .first()
    )
    if not leave:
        raise NotFoundError("Leave request not found")
    if actor_id is not None and leave.employee_id != actor_id:
        actor = get_employee(db, actor_id)
        if actor.role not in PRIVILEGED_ROLES:
            raise ForbiddenError()
    return leave


def list_leave_requests(
    db: Session,
    employee_id: Optional[int] = None,
    status: Optional[LeaveStatus] = None,
    leave_type_code: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> Page:
    """
    Filtered, newest-first page of requests.

    start_date/end_date select requests overlapping that window.
    """
    page = max(page, 1)
    limit = max(min(limit, 100), 1)

    query = db.query(LeaveRequest)
    if employee_id is not None:
        query = query.filter(LeaveRequest.employee_id == employee_id)
    if status is not None:
        query = query.filter(LeaveRequest.status == status)
    if leave_type_code:
        query = query.filter(LeaveRequest.leave_type_code == leave_type_code)
    if start_date:
        query = query.filter(LeaveRequest.end_date >= start_date)
    if end_date:
        query = query.filter(LeaveRequest.start_date <= end_date)

    total = query.count()
    items = (
        query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return Page(items=items, total=total, page=page, limit=limit, pages=math.ceil(total / limit) if total else 0)


def calculate_working_days(db: Session, start_date: date, end_date: date, region: str) -> int:
    """Weekdays in the range that are not active holidays of region (informational)"""
    if start_date > end_date:
        raise InvalidDateRangeError()
    holidays = list_holidays_between(db, start_date, end_date, region)
    return calculate_business_days(start_date, end_date, holidays)
