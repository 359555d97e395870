"""
Tests for the leave request lifecycle: create, draft, submit, update, cancel, delete
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal
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
from lms.db.init_db import seed_leave_types
from lms.models.audit_log import AuditLog
from lms.models.employee import Role
from lms.models.holiday import Holiday
from lms.models.leave import Approval, LeaveRequest, LeaveStatus
from lms.schemas.leave import LeaveRequestCreate, LeaveRequestUpdate
from lms.services import leave_balance_service as ledger
from lms.services import leave_service
from lms.services.approval_service import approve_leave, reject_leave
from lms.services.notification_service import NotificationService
from lms.tests.conftest import YEAR, make_employee

START = date.today() + timedelta(days=30)


def request_data(employee, code="CL", start=START, days=2, **overrides):
    values = dict(
        employee_id=employee.id,
        leave_type_code=code,
        start_date=start,
        end_date=start + timedelta(days=days - 1),
        reason="Family function",
    )
    values.update(overrides)
    return LeaveRequestCreate(**values)


def cl_balance(db, employee):
    return ledger.get_balance(db, employee.id, "CL", YEAR)


def test_submit_reserves_balance_and_routes_to_manager(db, employee, manager, grant_days, notifier, sender):
    grant_days(employee, "CL", 5)

    leave = leave_service.create_leave_request(db, request_data(employee), notifier=notifier)

    assert leave.status == LeaveStatus.PENDING
    assert leave.is_draft is False
    assert float(leave.total_days) == 2.0
    assert leave.balance_year == YEAR
    balance = cl_balance(db, employee)
    assert float(balance.pending) == 2.0
    assert float(balance.available) == 3.0

    approvals = db.query(Approval).filter(Approval.leave_request_id == leave.id).all()
    assert len(approvals) == 1
    assert approvals[0].approver_employee_id == manager.id
    assert approvals[0].level == 1

    assert sender.messages[0]["to"] == manager.email
    assert sender.messages[0]["subject"] == "New Leave Request Submitted"
    assert db.query(AuditLog).filter(AuditLog.action == "LEAVE_APPLIED").count() == 1


def test_draft_has_no_side_effects(db, employee, grant_days, notifier, sender):
    grant_days(employee, "CL", 5)

    leave = leave_service.create_leave_request(db, request_data(employee, is_draft=True), notifier=notifier)

    assert leave.status == LeaveStatus.DRAFT
    assert leave.is_draft is True
    assert leave.balance_year is None
    assert float(cl_balance(db, employee).available) == 5.0
    assert db.query(Approval).count() == 0
    assert sender.messages == []


def test_start_after_end_is_invalid_date_range(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    data = request_data(employee, end_date=START - timedelta(days=1))

    with pytest.raises(InvalidDateRangeError):
        leave_service.create_leave_request(db, data)


def test_half_day_counts_half(db, employee, grant_days):
    grant_days(employee, "CL", 1)

    leave = leave_service.create_leave_request(
        db, request_data(employee, days=1, is_half_day=True, half_day_type="FIRST_HALF"),
    )

    assert float(leave.total_days) == 0.5
    assert float(cl_balance(db, employee).available) == 0.5


def test_explicit_total_days_must_fit_the_range(db, employee, grant_days):
    grant_days(employee, "CL", 5)

    with pytest.raises(ValidationError):
        leave_service.create_leave_request(db, request_data(employee, days=2, total_days=Decimal("3")))
    with pytest.raises(ValidationError):
        leave_service.create_leave_request(db, request_data(employee, days=2, total_days=Decimal("1.3")))

    leave = leave_service.create_leave_request(db, request_data(employee, days=2, total_days=Decimal("1.5")))
    assert float(leave.total_days) == 1.5


def test_insufficient_balance_persists_nothing(db, employee, grant_days):
    grant_days(employee, "CL", 1)

    with pytest.raises(InsufficientBalanceError) as exc:
        leave_service.create_leave_request(db, request_data(employee, days=2))

    assert "Insufficient leave balance" in exc.value.detail
    assert db.query(LeaveRequest).count() == 0
    assert float(cl_balance(db, employee).pending) == 0.0


def test_missing_balance_row(db, employee, leave_types):
    with pytest.raises(NoBalanceRecordError):
        leave_service.create_leave_request(db, request_data(employee))


def test_unknown_employee_or_leave_type(db, employee, leave_types):
    with pytest.raises(NotFoundError):
        leave_service.create_leave_request(db, request_data(employee, employee_id=9999))
    with pytest.raises(NotFoundError):
        leave_service.create_leave_request(db, request_data(employee, code="XX"))


def test_overlap_with_active_request_is_rejected(db, employee, grant_days):
    grant_days(employee, "CL", 10)
    leave_service.create_leave_request(db, request_data(employee, days=3))

    with pytest.raises(OverlappingRequestError) as exc:
        leave_service.create_leave_request(db, request_data(employee, start=START + timedelta(days=2), days=2))
    assert exc.value.detail == "You already have a leave request for this date range"


def test_cancelled_request_does_not_block_dates(db, employee, grant_days):
    grant_days(employee, "CL", 10)
    first = leave_service.create_leave_request(db, request_data(employee, days=2))
    leave_service.cancel_leave_request(db, first.id, employee.id, reason="Plans changed")

    second = leave_service.create_leave_request(db, request_data(employee, days=2))
    assert second.status == LeaveStatus.PENDING


def test_leave_type_catalog_rules(db, employee, grant_days):
    grant_days(employee, "CL", 10)
    grant_days(employee, "BL", 3)
    grant_days(employee, "PL", 10)

    with pytest.raises(ValidationError, match="consecutive"):
        leave_service.create_leave_request(db, request_data(employee, code="CL", days=4))
    with pytest.raises(ValidationError, match="half day"):
        leave_service.create_leave_request(db, request_data(employee, code="BL", days=1, is_half_day=True))
    with pytest.raises(ValidationError, match="region"):
        leave_service.create_leave_request(db, request_data(employee, code="PTO", days=1))
    with pytest.raises(ValidationError, match="notice"):
        leave_service.create_leave_request(
            db, request_data(employee, code="PL", start=date.today() + timedelta(days=2), days=1),
        )


def test_draft_skips_notice_but_submit_enforces_it(db, employee, grant_days):
    soon = date.today() + timedelta(days=2)
    earlier = soon - timedelta(days=10)
    grant_days(employee, "PL", 10, year=earlier.year)

    draft = leave_service.create_leave_request(
        db, request_data(employee, code="PL", start=soon, days=1, is_draft=True),
    )
    with pytest.raises(ValidationError, match="notice"):
        leave_service.submit_draft(db, draft.id, employee.id)

    submitted = leave_service.submit_draft(db, draft.id, employee.id, today=earlier)
    assert submitted.status == LeaveStatus.PENDING
    assert submitted.balance_year == earlier.year


def test_submit_draft_once(db, employee, grant_days, notifier, sender):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))

    leave = leave_service.submit_draft(db, draft.id, employee.id, notifier=notifier)

    assert leave.status == LeaveStatus.PENDING
    assert leave.is_draft is False
    assert leave.balance_year == YEAR
    assert float(cl_balance(db, employee).pending) == 2.0
    assert sender.subjects() == ["New Leave Request Submitted"]

    with pytest.raises(InvalidStateError, match="already submitted"):
        leave_service.submit_draft(db, draft.id, employee.id, notifier=notifier)
    assert float(cl_balance(db, employee).pending) == 2.0
    assert db.query(Approval).filter(Approval.leave_request_id == draft.id).count() == 1


def test_concurrent_draft_submission_reserves_once(file_sessions):
    session_a, session_b = file_sessions
    seed_leave_types(session_b)
    boss = make_employee(session_b, "MGR100", role=Role.MANAGER, gender="M")
    owner = make_employee(session_b, "EMP100", manager=boss)
    ledger.grant(session_b, owner.id, "CL", YEAR, Decimal("5"))
    session_b.commit()
    draft = leave_service.create_leave_request(session_b, request_data(owner, is_draft=True))

    # A reads the draft before B submits it
    stale = leave_service.load_leave_request(session_a, draft.id)
    assert stale.status == LeaveStatus.DRAFT

    leave_service.submit_draft(session_b, draft.id, owner.id)

    with pytest.raises(InvalidStateError, match="already submitted"):
        leave_service.submit_draft(session_a, draft.id, owner.id)

    balance = ledger.get_balance(session_b, owner.id, "CL", YEAR)
    assert float(balance.pending) == 2.0
    assert float(balance.available) == 3.0
    assert session_b.query(Approval).filter(Approval.leave_request_id == draft.id).count() == 1
    reservations = [
        t for t in ledger.get_transactions(session_b, owner.id, YEAR) if t.action == "RESERVE"
    ]
    assert len(reservations) == 1


def test_submit_draft_by_other_employee_is_forbidden(db, employee, manager, grant_days):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))

    with pytest.raises(ForbiddenError):
        leave_service.submit_draft(db, draft.id, manager.id)


def test_submit_draft_checks_overlap(db, employee, grant_days):
    grant_days(employee, "CL", 10)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))
    leave_service.create_leave_request(db, request_data(employee, days=1))

    with pytest.raises(OverlappingRequestError):
        leave_service.submit_draft(db, draft.id, employee.id)
    assert leave_service.get_leave_request(db, draft.id).status == LeaveStatus.DRAFT


def test_update_draft_recomputes_total_days(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))

    updated = leave_service.update_leave_request(
        db, draft.id, employee.id,
        LeaveRequestUpdate(end_date=START + timedelta(days=2), reason="Longer trip"),
    )

    assert float(updated.total_days) == 3.0
    assert updated.reason == "Longer trip"
    audit = db.query(AuditLog).filter(AuditLog.action == "LEAVE_UPDATED").one()
    assert audit.old_values["total_days"] == 2.0


def test_update_draft_half_day_flag(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, days=1, is_draft=True))

    half = leave_service.update_leave_request(
        db, draft.id, employee.id, LeaveRequestUpdate(is_half_day=True, half_day_type="FIRST_HALF"),
    )
    assert half.is_half_day is True
    assert float(half.total_days) == 0.5

    # an unrelated patch keeps the flag
    kept = leave_service.update_leave_request(db, draft.id, employee.id, LeaveRequestUpdate(reason="Doctor"))
    assert kept.is_half_day is True
    assert float(kept.total_days) == 0.5

    full = leave_service.update_leave_request(db, draft.id, employee.id, LeaveRequestUpdate(is_half_day=False))
    assert full.is_half_day is False
    assert full.half_day_type is None
    assert float(full.total_days) == 1.0


def test_update_rejects_bad_range_and_submitted_requests(db, employee, manager, grant_days):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))

    with pytest.raises(InvalidDateRangeError):
        leave_service.update_leave_request(
            db, draft.id, employee.id, LeaveRequestUpdate(end_date=START - timedelta(days=1)),
        )
    with pytest.raises(ForbiddenError):
        leave_service.update_leave_request(db, draft.id, manager.id, LeaveRequestUpdate(reason="x"))

    leave_service.submit_draft(db, draft.id, employee.id)
    with pytest.raises(InvalidStateError, match="Cannot update submitted leave request"):
        leave_service.update_leave_request(db, draft.id, employee.id, LeaveRequestUpdate(reason="x"))


def test_delete_only_drafts(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    draft = leave_service.create_leave_request(db, request_data(employee, is_draft=True))
    submitted = leave_service.create_leave_request(db, request_data(employee, start=START + timedelta(days=10)))

    result = leave_service.delete_leave_request(db, draft.id, employee.id)

    assert result["message"] == "Leave request deleted successfully"
    assert db.query(LeaveRequest).filter(LeaveRequest.id == draft.id).first() is None
    with pytest.raises(InvalidStateError, match="Cannot delete submitted leave request"):
        leave_service.delete_leave_request(db, submitted.id, employee.id)
    with pytest.raises(NotFoundError):
        leave_service.delete_leave_request(db, draft.id, employee.id)


def test_cancel_pending_releases_reservation(db, employee, manager, grant_days, notifier, sender):
    grant_days(employee, "CL", 5)
    leave = leave_service.create_leave_request(db, request_data(employee))

    cancelled = leave_service.cancel_leave_request(db, leave.id, employee.id, reason="Not needed", notifier=notifier)

    assert cancelled.status == LeaveStatus.CANCELLED
    assert cancelled.cancelled_date is not None
    assert cancelled.remarks == "Not needed"
    balance = cl_balance(db, employee)
    assert float(balance.pending) == 0.0
    assert float(balance.available) == 5.0
    approval = db.query(Approval).filter(Approval.leave_request_id == leave.id).one()
    assert approval.is_active is False
    assert sender.messages[-1]["subject"] == "Leave Request Cancelled"
    assert sender.messages[-1]["to"] == manager.email


def test_cancel_approved_refunds_used_days(db, employee, manager, grant_days):
    grant_days(employee, "CL", 5)
    leave = leave_service.create_leave_request(db, request_data(employee))
    approve_leave(db, leave.id, manager.id)

    leave_service.cancel_leave_request(db, leave.id, employee.id)

    balance = cl_balance(db, employee)
    assert float(balance.used) == 0.0
    assert float(balance.pending) == 0.0
    assert float(balance.available) == 5.0


def test_cancel_rules(db, employee, manager, admin, grant_days):
    grant_days(employee, "CL", 10)
    leave = leave_service.create_leave_request(db, request_data(employee))
    rejected = leave_service.create_leave_request(db, request_data(employee, start=START + timedelta(days=10)))
    reject_leave(db, rejected.id, manager.id, "Team offsite")

    with pytest.raises(ForbiddenError):
        leave_service.cancel_leave_request(db, leave.id, manager.id)
    with pytest.raises(InvalidStateError, match="Cannot cancel this leave request"):
        leave_service.cancel_leave_request(db, rejected.id, employee.id)

    cancelled = leave_service.cancel_leave_request(db, leave.id, admin.id, reason="Company shutdown")
    assert cancelled.status == LeaveStatus.CANCELLED
    with pytest.raises(InvalidStateError):
        leave_service.cancel_leave_request(db, leave.id, employee.id)


def test_get_leave_request_visibility(db, employee, manager, hr, grant_days):
    grant_days(employee, "CL", 5)
    leave = leave_service.create_leave_request(db, request_data(employee))

    assert leave_service.get_leave_request(db, leave.id, actor_id=employee.id).id == leave.id
    assert leave_service.get_leave_request(db, leave.id, actor_id=hr.id).approvals[0].level == 1
    with pytest.raises(ForbiddenError):
        leave_service.get_leave_request(db, leave.id, actor_id=manager.id)
    with pytest.raises(NotFoundError):
        leave_service.get_leave_request(db, 9999)


def test_list_leave_requests_filters_and_pages(db, employee, manager, grant_days):
    grant_days(employee, "CL", 10)
    grant_days(manager, "CL", 10)
    for offset in (0, 5, 10):
        leave_service.create_leave_request(db, request_data(employee, start=START + timedelta(days=offset), days=1))
    leave_service.create_leave_request(db, request_data(manager, days=1))

    page = leave_service.list_leave_requests(db, employee_id=employee.id, page=1, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert len(page.items) == 2

    window = leave_service.list_leave_requests(
        db, start_date=START + timedelta(days=4), end_date=START + timedelta(days=6),
    )
    assert window.total == 1
    pending = leave_service.list_leave_requests(db, status=LeaveStatus.PENDING)
    assert pending.total == 4


def test_calculate_working_days_skips_weekends_and_holidays(db):
    monday = date(2025, 3, 3)
    db.add(Holiday(date=date(2025, 3, 5), name="Holi", region="IND", is_active=True))
    db.add(Holiday(date=date(2025, 3, 6), name="Inactive", region="IND", is_active=False))
    db.commit()

    assert leave_service.calculate_working_days(db, monday, monday + timedelta(days=6), "IND") == 4
    assert leave_service.calculate_working_days(db, monday, monday + timedelta(days=6), "US") == 5


def test_failing_sender_does_not_break_submission(db, employee, grant_days):
    def broken_sender(to, subject, body):
        raise RuntimeError("SMTP down")

    grant_days(employee, "CL", 5)
    leave = leave_service.create_leave_request(
        db, request_data(employee), notifier=NotificationService(sender=broken_sender, enabled=True),
    )

    assert leave.status == LeaveStatus.PENDING
    assert float(cl_balance(db, employee).pending) == 2.0


def test_employee_without_manager_gets_no_approval_row(db, admin, leave_types):
    loner = make_employee(db, "SOLO01")
    ledger.grant(db, loner.id, "CL", YEAR, 5)
    db.commit()

    leave = leave_service.create_leave_request(db, request_data(loner))

    assert leave.status == LeaveStatus.PENDING
    assert db.query(Approval).filter(Approval.leave_request_id == leave.id).count() == 0
