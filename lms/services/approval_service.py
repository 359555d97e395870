"""
Approval chain - approve / reject pending leave requests

A request is fully approved once no active PENDING approval remains for it.
Only then is the reservation committed on the ledger and the employee
notified. A rejection releases the reservation and supersedes any other
approvals still waiting.
"""
import logging
import math
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from lms.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    LeaveManagementError,
    NotFoundError,
    ValidationError,
)
from lms.models.employee import Employee
from lms.models.leave import Approval, ApprovalStatus, LeaveRequest, LeaveStatus
from lms.schemas.leave import BulkDecisionResult, Page
from lms.services import leave_balance_service as ledger
from lms.services.audit_service import AuditAction, AuditEntity, log_audit
from lms.services.employee_service import direct_reports_query, get_employee
from lms.services.leave_service import (
    balance_year,
    load_leave_request,
    supersede_pending_approvals,
    transition_status,
)
from lms.services.notification_service import NotificationService, notification_service
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)

APPROVAL_NOT_FOUND = "Approval not found or already processed"


def _load_pending_request(db: Session, request_id: int, approver: Employee) -> LeaveRequest:
    leave = load_leave_request(db, request_id, lock=True)
    if leave.status != LeaveStatus.PENDING:
        raise InvalidStateError("Leave request is not pending")
    if leave.employee_id == approver.id and not approver.is_admin:
        raise ForbiddenError("Employee cannot approve or reject their own leave")
    return leave


def _resolve_approval(db: Session, leave: LeaveRequest, approver: Employee) -> Approval:
    """
    The approver's active pending approval on the request.

    An admin without one gets a level-1 approval created on the spot so an
    unrouted request (employee without a manager) can still be decided.
    """
    approval = (
        db.query(Approval)
        .filter(
            Approval.leave_request_id == leave.id,
            Approval.approver_employee_id == approver.id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.is_active == True,
        )
        .order_by(Approval.level)
        .first()
    )
    if approval is None and approver.is_admin:
        approval = Approval(
            leave_request_id=leave.id,
            approver_employee_id=approver.id,
            level=1,
            status=ApprovalStatus.PENDING,
            is_active=True,
        )
        db.add(approval)
        db.flush()
        logger.info("Admin %s deciding leave request %s without a routed approval", approver.id, leave.id)
    if approval is None:
        raise NotFoundError(APPROVAL_NOT_FOUND)
    return approval


def _decide(db: Session, approval: Approval, decision: ApprovalStatus, comments: Optional[str]) -> None:
    """Compare-and-set the approval from PENDING to decision"""
    values = {"status": decision, "comments": comments}
    if decision == ApprovalStatus.APPROVED:
        values["approved_date"] = now_utc()
    else:
        values["rejected_date"] = now_utc()
    updated = (
        db.query(Approval)
        .filter(
            Approval.id == approval.id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.is_active == True,
        )
        .update(values, synchronize_session="fetch")
    )
    if updated != 1:
        raise NotFoundError(APPROVAL_NOT_FOUND)


def count_pending_approvals(db: Session, request_id: int) -> int:
    return (
        db.query(Approval)
        .filter(
            Approval.leave_request_id == request_id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.is_active == True,
        )
        .count()
    )


def approve_leave(
    db: Session,
    request_id: int,
    approver_employee_id: int,
    comments: Optional[str] = None,
    notifier: Optional[NotificationService] = None,
) -> LeaveRequest:
    """
    Record an approval decision on a PENDING request

    Args:
        db: Database session
        request_id: Leave request to approve
        approver_employee_id: Employee acting as approver
        comments: Optional approval comments
        notifier: Notification service (defaults to the module instance)

    Returns:
        The leave request; APPROVED if this was the last pending approval

    Raises:
        NotFoundError: Unknown request or approver, or no pending approval for this approver
        InvalidStateError: Request is not PENDING
        ForbiddenError: A non-admin approver owns the request
    """
    notifier = notifier or notification_service
    approver = get_employee(db, approver_employee_id, detail="Approver not found")
    try:
        leave = _load_pending_request(db, request_id, approver)
        approval = _resolve_approval(db, leave, approver)
        _decide(db, approval, ApprovalStatus.APPROVED, comments)
        remaining = count_pending_approvals(db, leave.id)
        if remaining == 0:
            transition_status(
                db, leave.id, [LeaveStatus.PENDING], LeaveStatus.APPROVED,
                detail="Leave request is not pending",
                approved_date=now_utc(),
            )
            ledger.commit(
                db, leave.employee_id, leave.leave_type_code, balance_year(leave), leave.total_days,
                leave_request_id=leave.id, actor_id=approver.id,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    if remaining:
        logger.info(
            "Approval by %s recorded on leave request %s; %d approvals remaining",
            approver.id, leave.id, remaining,
        )
        log_audit(
            db,
            actor_id=approver.id,
            action=AuditAction.LEAVE_APPROVAL_RECORDED,
            entity=AuditEntity.LEAVE_REQUEST,
            entity_id=leave.id,
            description=f"Level {approval.level} approval by {approver.full_name}",
            new_values={"approval_id": approval.id, "remaining": remaining, "comments": comments},
            leave_request_id=leave.id,
        )
        return leave

    logger.info("Leave request %s approved by %s", leave.id, approver.id)
    employee = leave.employee
    notifier.leave_approved(employee.email, employee.full_name, leave.leave_type.name, approver.full_name)
    log_audit(
        db,
        actor_id=approver.id,
        action=AuditAction.LEAVE_APPROVED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"Leave request {leave.id} approved by {approver.full_name}",
        old_values={"status": LeaveStatus.PENDING},
        new_values={"status": leave.status, "comments": comments, "total_days": leave.total_days},
        leave_request_id=leave.id,
    )
    return leave


def reject_leave(
    db: Session,
    request_id: int,
    approver_employee_id: int,
    rejection_reason: str,
    comments: Optional[str] = None,
    notifier: Optional[NotificationService] = None,
) -> LeaveRequest:
    """
    Reject a PENDING request, releasing its reservation.

    Raises:
        ValidationError: Missing rejection reason
        NotFoundError / InvalidStateError / ForbiddenError: as for approve_leave
    """
    notifier = notifier or notification_service
    if not rejection_reason or not rejection_reason.strip():
        raise ValidationError("Rejection reason is required")
    rejection_reason = rejection_reason.strip()

    approver = get_employee(db, approver_employee_id, detail="Approver not found")
    try:
        leave = _load_pending_request(db, request_id, approver)
        approval = _resolve_approval(db, leave, approver)
        _decide(db, approval, ApprovalStatus.REJECTED, comments or rejection_reason)
        transition_status(
            db, leave.id, [LeaveStatus.PENDING], LeaveStatus.REJECTED,
            detail="Leave request is not pending",
            rejected_date=now_utc(),
            rejection_reason=rejection_reason,
        )
        ledger.release(
            db, leave.employee_id, leave.leave_type_code, balance_year(leave), leave.total_days,
            leave_request_id=leave.id, actor_id=approver.id,
        )
        supersede_pending_approvals(db, leave.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info("Leave request %s rejected by %s", leave.id, approver.id)
    employee = leave.employee
    notifier.leave_rejected(
        employee.email, employee.full_name, leave.leave_type.name, approver.full_name, rejection_reason,
    )
    log_audit(
        db,
        actor_id=approver.id,
        action=AuditAction.LEAVE_REJECTED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id=leave.id,
        description=f"Leave request {leave.id} rejected by {approver.full_name}",
        old_values={"status": LeaveStatus.PENDING},
        new_values={"status": leave.status, "rejection_reason": rejection_reason, "comments": comments},
        leave_request_id=leave.id,
    )
    return leave


def list_pending_approvals(db: Session, approver_employee_id: int, page: int = 1, limit: int = 10) -> Page:
    """Active pending approvals assigned to an approver, oldest request first"""
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    query = (
        db.query(Approval)
        .join(LeaveRequest, LeaveRequest.id == Approval.leave_request_id)
        .filter(
            Approval.approver_employee_id == approver_employee_id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.is_active == True,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
    )
    total = query.count()
    items = (
        query.options(joinedload(Approval.leave_request))
        .order_by(LeaveRequest.created_at, LeaveRequest.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return Page(items=items, total=total, page=page, limit=limit, pages=math.ceil(total / limit) if total else 0)


def get_approval_history(db: Session, approver_employee_id: int, page: int = 1, limit: int = 10) -> Page:
    """Decisions an approver has made, newest first"""
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    query = db.query(Approval).filter(
        Approval.approver_employee_id == approver_employee_id,
        Approval.status.in_([ApprovalStatus.APPROVED, ApprovalStatus.REJECTED]),
    )
    total = query.count()
    items = (
        query.options(joinedload(Approval.leave_request))
        .order_by(Approval.updated_at.desc(), Approval.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return Page(items=items, total=total, page=page, limit=limit, pages=math.ceil(total / limit) if total else 0)


def get_team_members_count(db: Session, manager_id: int) -> int:
    return direct_reports_query(db, manager_id).count()


def get_team_leave_requests(
    db: Session,
    manager_id: int,
    status: Optional[LeaveStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Page:
    """
    Requests of a manager's active direct reports, newest first.

    Drafts are private to their owner and never listed.
    """
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    team_ids = direct_reports_query(db, manager_id).with_entities(Employee.id).subquery()
    query = db.query(LeaveRequest).filter(
        LeaveRequest.employee_id.in_(team_ids.select()),
        LeaveRequest.status != LeaveStatus.DRAFT,
    )
    if status is not None:
        query = query.filter(LeaveRequest.status == status)
    total = query.count()
    items = (
        query.options(joinedload(LeaveRequest.employee), selectinload(LeaveRequest.approvals))
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return Page(items=items, total=total, page=page, limit=limit, pages=math.ceil(total / limit) if total else 0)


def bulk_approve(
    db: Session,
    request_ids: List[int],
    approver_employee_id: int,
    comments: Optional[str] = None,
    notifier: Optional[NotificationService] = None,
) -> BulkDecisionResult:
    """Approve each request independently; failures are collected, not raised"""
    result = BulkDecisionResult()
    for request_id in request_ids:
        try:
            approve_leave(db, request_id, approver_employee_id, comments, notifier=notifier)
            result.processed.append(request_id)
        except LeaveManagementError as exc:
            logger.warning("Bulk approve skipped leave request %s: %s", request_id, exc.detail)
            result.errors.append(f"Leave request {request_id}: {exc.detail}")

    log_audit(
        db,
        actor_id=approver_employee_id,
        action=AuditAction.LEAVE_BULK_APPROVED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id="BULK",
        description=f"Bulk approved {len(result.processed)} of {len(request_ids)} leave requests",
        new_values=result.model_dump(),
    )
    return result


def bulk_reject(
    db: Session,
    request_ids: List[int],
    approver_employee_id: int,
    rejection_reason: str,
    comments: Optional[str] = None,
    notifier: Optional[NotificationService] = None,
) -> BulkDecisionResult:
    """Reject each request independently; the reason is checked once up front"""
    if not rejection_reason or not rejection_reason.strip():
        raise ValidationError("Rejection reason is required")

    result = BulkDecisionResult()
    for request_id in request_ids:
        try:
            reject_leave(db, request_id, approver_employee_id, rejection_reason, comments, notifier=notifier)
            result.processed.append(request_id)
        except LeaveManagementError as exc:
            logger.warning("Bulk reject skipped leave request %s: %s", request_id, exc.detail)
            result.errors.append(f"Leave request {request_id}: {exc.detail}")

    log_audit(
        db,
        actor_id=approver_employee_id,
        action=AuditAction.LEAVE_BULK_REJECTED,
        entity=AuditEntity.LEAVE_REQUEST,
        entity_id="BULK",
        description=f"Bulk rejected {len(result.processed)} of {len(request_ids)} leave requests",
        new_values=result.model_dump(),
    )
    return result
