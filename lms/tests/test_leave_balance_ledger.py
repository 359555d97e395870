"""
Tests for the leave balance ledger
"""
import pytest
from datetime import date
from decimal import Decimal
from lms.core.exceptions import (
    InsufficientBalanceError,
    InvalidStateError,
    NoBalanceRecordError,
    ValidationError,
)
from lms.models.audit_log import AuditLog
from lms.models.leave import LeaveBalance, LeaveTransaction
from lms.services import leave_balance_service as ledger
from lms.tests.conftest import YEAR, make_employee


def assert_consistent(balance):
    assert float(balance.available) == float(ledger.expected_available(balance))


def test_reserve_moves_available_to_pending(db, employee, grant_days):
    grant_days(employee, "CL", 5)

    balance = ledger.reserve(db, employee.id, "CL", YEAR, Decimal("2"))
    db.commit()

    assert float(balance.pending) == 2.0
    assert float(balance.available) == 3.0
    assert float(balance.allocated) == 5.0
    assert_consistent(balance)
    actions = [t.action for t in ledger.get_transactions(db, employee.id, YEAR)]
    assert "RESERVE" in actions


def test_reserve_insufficient_balance_leaves_row_unchanged(db, employee, grant_days):
    grant_days(employee, "CL", 2)

    with pytest.raises(InsufficientBalanceError) as exc:
        ledger.reserve(db, employee.id, "CL", YEAR, Decimal("3"))
    assert "Available: 2" in exc.value.detail
    db.rollback()

    balance = ledger.get_balance(db, employee.id, "CL", YEAR)
    assert float(balance.available) == 2.0
    assert float(balance.pending) == 0.0


def test_reserve_without_row_raises_no_balance_record(db, employee, leave_types):
    with pytest.raises(NoBalanceRecordError):
        ledger.reserve(db, employee.id, "CL", YEAR, 1)


def test_reserve_rejects_non_positive_days(db, employee, grant_days):
    grant_days(employee, "CL", 2)
    with pytest.raises(ValidationError):
        ledger.reserve(db, employee.id, "CL", YEAR, 0)


def test_reserve_allows_negative_when_leave_type_permits(db, employee, leave_types):
    ledger.upsert_allocation(db, employee.id, "LWP", YEAR, 0, performed_by="admin@example.com")

    balance = ledger.reserve(db, employee.id, "LWP", YEAR, Decimal("2"))
    db.commit()

    assert float(balance.available) == -2.0
    assert float(balance.pending) == 2.0


def test_second_reserve_sees_first_reservation(db, employee, grant_days):
    """A stale in-memory row must not let two reservations overdraw the balance"""
    grant_days(employee, "CL", 5)
    stale = ledger.get_balance(db, employee.id, "CL", YEAR)

    ledger.reserve(db, employee.id, "CL", YEAR, 3)
    with pytest.raises(InsufficientBalanceError):
        ledger.reserve(db, employee.id, "CL", YEAR, 3)
    db.commit()

    fresh = ledger.get_balance(db, employee.id, "CL", YEAR)
    assert fresh is stale
    assert float(fresh.pending) == 3.0
    assert float(fresh.available) == 2.0


def test_commit_moves_pending_to_used(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    ledger.reserve(db, employee.id, "CL", YEAR, 2)

    balance = ledger.commit(db, employee.id, "CL", YEAR, 2)
    db.commit()

    assert float(balance.pending) == 0.0
    assert float(balance.used) == 2.0
    assert float(balance.available) == 3.0
    assert_consistent(balance)


def test_release_returns_pending_to_available(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    ledger.reserve(db, employee.id, "CL", YEAR, Decimal("1.5"))

    balance = ledger.release(db, employee.id, "CL", YEAR, Decimal("1.5"))
    db.commit()

    assert float(balance.pending) == 0.0
    assert float(balance.available) == 5.0
    assert_consistent(balance)


def test_release_more_than_pending_is_invalid_state(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    ledger.reserve(db, employee.id, "CL", YEAR, 1)

    with pytest.raises(InvalidStateError):
        ledger.release(db, employee.id, "CL", YEAR, 2)


def test_commit_without_row_raises_no_balance_record(db, employee, leave_types):
    with pytest.raises(NoBalanceRecordError):
        ledger.commit(db, employee.id, "CL", YEAR, 1)


def test_refund_used_returns_used_days(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    ledger.reserve(db, employee.id, "CL", YEAR, 2)
    ledger.commit(db, employee.id, "CL", YEAR, 2)

    balance = ledger.refund_used(db, employee.id, "CL", YEAR, 2)
    db.commit()

    assert float(balance.used) == 0.0
    assert float(balance.available) == 5.0
    assert_consistent(balance)

    with pytest.raises(InvalidStateError):
        ledger.refund_used(db, employee.id, "CL", YEAR, 1)


def test_grant_creates_row_and_accumulates(db, employee, leave_types):
    ledger.grant(db, employee.id, "PL", YEAR, Decimal("1.5"))
    balance = ledger.grant(db, employee.id, "PL", YEAR, Decimal("1.5"))
    db.commit()

    assert float(balance.allocated) == 3.0
    assert float(balance.available) == 3.0
    assert db.query(LeaveBalance).filter(LeaveBalance.employee_id == employee.id).count() == 1


def test_revoke_requires_available_days(db, employee, grant_days):
    grant_days(employee, "CL", 2)

    with pytest.raises(InsufficientBalanceError):
        ledger.revoke(db, employee.id, "CL", YEAR, 3)

    balance = ledger.revoke(db, employee.id, "CL", YEAR, 2)
    db.commit()
    assert float(balance.allocated) == 0.0
    assert float(balance.available) == 0.0


def test_revoke_without_row_raises_no_balance_record(db, employee, leave_types):
    with pytest.raises(NoBalanceRecordError):
        ledger.revoke(db, employee.id, "CL", YEAR, 1)


def test_upsert_allocation_recomputes_available(db, employee, grant_days):
    grant_days(employee, "CL", 10)
    ledger.reserve(db, employee.id, "CL", YEAR, 2)
    ledger.commit(db, employee.id, "CL", YEAR, 2)
    ledger.reserve(db, employee.id, "CL", YEAR, 1)
    db.commit()

    balance = ledger.upsert_allocation(db, employee.id, "CL", YEAR, 6, performed_by="hr@example.com")

    assert float(balance.allocated) == 6.0
    assert float(balance.available) == 3.0  # 6 - 2 used - 1 pending
    assert_consistent(balance)
    audit = db.query(AuditLog).filter(AuditLog.action == "LEAVE_BALANCE_ADJUSTED").one()
    assert audit.entity_id == f"{employee.id}_CL_{YEAR}"
    assert audit.old_values["allocated"] == 10.0


def test_upsert_allocation_rejects_negative(db, employee, leave_types):
    with pytest.raises(ValidationError):
        ledger.upsert_allocation(db, employee.id, "CL", YEAR, -1)


def test_initialize_balances_creates_rows_for_region(db, employee, leave_types):
    balances = ledger.initialize_balances(db, employee.id, YEAR)

    codes = {b.leave_type_code for b in balances}
    assert "CL" in codes and "PL" in codes and "BL" in codes
    assert "PTO" not in codes  # US only
    assert all(float(b.available) == 0.0 for b in balances)

    # Running again does not duplicate rows
    ledger.initialize_balances(db, employee.id, YEAR)
    assert db.query(LeaveBalance).filter(LeaveBalance.employee_id == employee.id).count() == len(balances)


def test_initialize_balances_pro_rates_annual_allocation(db, manager, leave_types):
    today = date(YEAR, 1, 1)
    joiner = make_employee(
        db, "NEW001", region="US", manager=manager, date_of_joining=date(YEAR, 7, 2),
    )

    balances = ledger.initialize_balances(db, joiner.id, YEAR, pro_rata=True, today=today)

    pto = next(b for b in balances if b.leave_type_code == "PTO")
    assert 0 < float(pto.allocated) < 15
    assert float(pto.available) == float(pto.allocated)
    assert "CL" not in {b.leave_type_code for b in balances}


def test_carry_forward_caps_and_expires_remainder(db, employee, leave_types):
    ledger.grant(db, employee.id, "PL", YEAR, 20)
    db.commit()

    outcome = ledger.carry_forward(db, employee.id, "PL", YEAR)
    db.commit()

    assert outcome["carried_forward"] == Decimal("15")
    assert outcome["expired"] == Decimal("5")
    closed = ledger.get_balance(db, employee.id, "PL", YEAR)
    assert float(closed.expired) == 5.0
    assert_consistent(closed)
    next_year = ledger.get_balance(db, employee.id, "PL", YEAR + 1)
    assert float(next_year.carried_forward) == 15.0
    assert float(next_year.available) == 15.0

    # A second run credits nothing new
    ledger.carry_forward(db, employee.id, "PL", YEAR)
    db.commit()
    next_year = ledger.get_balance(db, employee.id, "PL", YEAR + 1)
    assert float(next_year.carried_forward) == 15.0
    assert float(next_year.available) == 15.0


def test_carry_forward_not_allowed_expires_everything(db, employee, grant_days):
    grant_days(employee, "CL", 4)

    outcome = ledger.carry_forward(db, employee.id, "CL", YEAR)
    db.commit()

    assert outcome == {"carried_forward": Decimal("0"), "expired": Decimal("4")}
    assert ledger.get_balance(db, employee.id, "CL", YEAR + 1) is None


def test_run_year_close_summarises_all_rows(db, employee, manager, leave_types):
    ledger.grant(db, employee.id, "PL", YEAR, 10)
    ledger.grant(db, manager.id, "CL", YEAR, 3)
    db.commit()

    summary = ledger.run_year_close(db, YEAR, actor_id=manager.id)

    assert summary["rows_processed"] == 2
    assert summary["total_carried_forward"] == Decimal("10")
    assert summary["total_expired"] == Decimal("3")
    assert db.query(AuditLog).filter(AuditLog.action == "LEAVE_BALANCE_YEAR_CLOSED").count() == 1


def test_get_balances_orders_by_catalog(db, employee, grant_days):
    grant_days(employee, "PL", 1)
    grant_days(employee, "CL", 1)

    codes = [b.leave_type_code for b in ledger.get_balances(db, employee.id, YEAR)]
    assert codes == ["CL", "PL"]


def test_every_mutation_is_journaled(db, employee, grant_days):
    grant_days(employee, "CL", 5)
    ledger.reserve(db, employee.id, "CL", YEAR, 1, leave_request_id=None, actor_id=employee.id)
    ledger.release(db, employee.id, "CL", YEAR, 1)
    db.commit()

    rows = db.query(LeaveTransaction).filter(LeaveTransaction.employee_id == employee.id).all()
    assert sorted(r.action for r in rows) == ["GRANT", "RELEASE", "RESERVE"]
    assert len(ledger.get_transactions(db, employee.id, YEAR, limit=2)) == 2
