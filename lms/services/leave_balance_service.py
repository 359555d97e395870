"""
Leave balance ledger.

One row per (employee, leave type, year) holding
    available = allocated + carried_forward - used - pending - expired - encashed

Rows are changed only through this module. Each mutation is a single
conditional UPDATE with the arithmetic done in SQL, so two sessions
applying deltas to the same row serialize in the database instead of
overwriting each other's read-modify-write. A guard that fails leaves the
row untouched and raises.

Primitives (reserve, commit, release, refund_used, grant, revoke) only
flush: the caller owns the transaction and commits once. Admin entry points
(upsert_allocation, initialize_balances, run_year_close) commit themselves.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Any, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms.core.exceptions import (
    InsufficientBalanceError,
    InvalidStateError,
    NoBalanceRecordError,
    ValidationError,
)
from lms.models.leave import (
    LeaveBalance,
    LeaveRegion,
    LeaveTransaction,
    LeaveTransactionAction,
    LeaveTypeConfig,
)
from lms.services.audit_service import AuditAction, AuditEntity, balance_entity_id, log_audit
from lms.services.employee_service import get_employee
from lms.services.leave_type_service import get_leave_type, list_leave_types_for_region
from lms.utils.date_utils import calculate_pro_rata_allocation
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

Days = Union[int, float, str, Decimal]


def to_days(days: Days) -> Decimal:
    """Normalize a positive day count to Decimal"""
    value = Decimal(str(days))
    if value <= 0:
        raise ValidationError("Number of days must be greater than 0")
    return value


def expected_available(balance: LeaveBalance) -> Decimal:
    """The available figure the other columns imply"""
    return (
        Decimal(str(balance.allocated))
        + Decimal(str(balance.carried_forward))
        - Decimal(str(balance.used))
        - Decimal(str(balance.pending))
        - Decimal(str(balance.expired))
        - Decimal(str(balance.encashed))
    )


def get_balance(db: Session, employee_id: int, leave_type_code: str, year: int) -> Optional[LeaveBalance]:
    """Current row for the key, re-read from the database"""
    return (
        db.query(LeaveBalance)
        .populate_existing()
        .filter(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_code == leave_type_code,
            LeaveBalance.year == year,
        )
        .first()
    )


def get_balances(db: Session, employee_id: int, year: int) -> List[LeaveBalance]:
    """All balance rows of an employee for year, limited to leave types of their region"""
    employee = get_employee(db, employee_id, detail="Employee not found")
    return (
        db.query(LeaveBalance)
        .populate_existing()
        .join(LeaveTypeConfig, LeaveTypeConfig.code == LeaveBalance.leave_type_code)
        .filter(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
            LeaveTypeConfig.region.in_([LeaveRegion.ALL, LeaveRegion(employee.region)]),
        )
        .order_by(LeaveTypeConfig.sort_order, LeaveTypeConfig.code)
        .all()
    )


def _log_transaction(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    delta_days: Decimal,
    action: LeaveTransactionAction,
    leave_request_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> None:
    db.add(LeaveTransaction(
        employee_id=employee_id,
        leave_request_id=leave_request_id,
        leave_type_code=leave_type_code,
        year=year,
        delta_days=delta_days,
        action=action.value,
        remarks=remarks,
        actor_id=actor_id,
        created_at=now_utc(),
    ))


def _apply_deltas(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    deltas: Dict[str, Decimal],
    guard=None,
) -> int:
    """
    UPDATE leave_balances SET col = col + delta ... WHERE key [AND guard]

    Returns the number of rows changed (0 or 1).
    """
    values = {
        getattr(LeaveBalance, column): getattr(LeaveBalance, column) + delta
        for column, delta in deltas.items()
    }
    query = db.query(LeaveBalance).filter(
        LeaveBalance.employee_id == employee_id,
        LeaveBalance.leave_type_code == leave_type_code,
        LeaveBalance.year == year,
    )
    if guard is not None:
        query = query.filter(guard)
    return query.update(values, synchronize_session=False)


def _missing_or_short(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    requested: Decimal,
) -> Exception:
    balance = get_balance(db, employee_id, leave_type_code, year)
    if balance is None:
        return NoBalanceRecordError(f"No leave balance found for {leave_type_code} in {year}")
    return InsufficientBalanceError(
        f"Insufficient leave balance. Available: {balance.available} days, Requested: {requested} days"
    )


def _get_or_create_balance(db: Session, employee_id: int, leave_type_code: str, year: int) -> LeaveBalance:
    """Existing row for the key, or a new zeroed row. A concurrent insert of the same key wins."""
    balance = get_balance(db, employee_id, leave_type_code, year)
    if balance is not None:
        return balance
    try:
        with db.begin_nested():
            balance = LeaveBalance(
                employee_id=employee_id,
                leave_type_code=leave_type_code,
                year=year,
                allocated=ZERO,
                used=ZERO,
                pending=ZERO,
                available=ZERO,
                carried_forward=ZERO,
                expired=ZERO,
                encashed=ZERO,
            )
            db.add(balance)
    except IntegrityError:
        logger.info("Balance row %s_%s_%s created concurrently", employee_id, leave_type_code, year)
        balance = get_balance(db, employee_id, leave_type_code, year)
    return balance


def reserve(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    leave_request_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> LeaveBalance:
    """
    Hold days for a pending request: pending += days, available -= days

    Raises:
        NoBalanceRecordError: No row for the key
        InsufficientBalanceError: available < days and the leave type does not allow a negative balance
    """
    days = to_days(days)
    leave_type = get_leave_type(db, leave_type_code)
    guard = None if leave_type.allow_negative_balance else LeaveBalance.available >= days
    updated = _apply_deltas(
        db, employee_id, leave_type_code, year,
        {"pending": days, "available": -days},
        guard=guard,
    )
    if not updated:
        raise _missing_or_short(db, employee_id, leave_type_code, year, days)
    _log_transaction(
        db, employee_id, leave_type_code, year, -days,
        LeaveTransactionAction.RESERVE, leave_request_id, actor_id,
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def _settle_pending(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Decimal,
    deltas: Dict[str, Decimal],
) -> None:
    updated = _apply_deltas(
        db, employee_id, leave_type_code, year, deltas,
        guard=LeaveBalance.pending >= days,
    )
    if not updated:
        if get_balance(db, employee_id, leave_type_code, year) is None:
            raise NoBalanceRecordError(f"No leave balance found for {leave_type_code} in {year}")
        raise InvalidStateError(f"Pending {leave_type_code} balance is lower than {days} days")


def commit(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    leave_request_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> LeaveBalance:
    """Turn a reservation into usage: pending -= days, used += days. available is unchanged."""
    days = to_days(days)
    _settle_pending(db, employee_id, leave_type_code, year, days, {"pending": -days, "used": days})
    _log_transaction(
        db, employee_id, leave_type_code, year, ZERO,
        LeaveTransactionAction.COMMIT, leave_request_id, actor_id,
        remarks=f"{days} days used",
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def release(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    leave_request_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> LeaveBalance:
    """Drop a reservation: pending -= days, available += days"""
    days = to_days(days)
    _settle_pending(db, employee_id, leave_type_code, year, days, {"pending": -days, "available": days})
    _log_transaction(
        db, employee_id, leave_type_code, year, days,
        LeaveTransactionAction.RELEASE, leave_request_id, actor_id,
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def refund_used(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    leave_request_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> LeaveBalance:
    """Give back days of an approved request: used -= days, available += days"""
    days = to_days(days)
    updated = _apply_deltas(
        db, employee_id, leave_type_code, year,
        {"used": -days, "available": days},
        guard=LeaveBalance.used >= days,
    )
    if not updated:
        if get_balance(db, employee_id, leave_type_code, year) is None:
            raise NoBalanceRecordError(f"No leave balance found for {leave_type_code} in {year}")
        raise InvalidStateError(f"Used {leave_type_code} balance is lower than {days} days")
    _log_transaction(
        db, employee_id, leave_type_code, year, days,
        LeaveTransactionAction.REFUND, leave_request_id, actor_id,
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def grant(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> LeaveBalance:
    """Credit days: allocated += days, available += days. Creates the row if absent."""
    days = to_days(days)
    _get_or_create_balance(db, employee_id, leave_type_code, year)
    _apply_deltas(db, employee_id, leave_type_code, year, {"allocated": days, "available": days})
    _log_transaction(
        db, employee_id, leave_type_code, year, days,
        LeaveTransactionAction.GRANT, actor_id=actor_id, remarks=remarks,
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def revoke(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    days: Days,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> LeaveBalance:
    """
    Debit days: allocated -= days, available -= days

    Raises:
        NoBalanceRecordError: No row for the key
        InsufficientBalanceError: available < days
    """
    days = to_days(days)
    updated = _apply_deltas(
        db, employee_id, leave_type_code, year,
        {"allocated": -days, "available": -days},
        guard=LeaveBalance.available >= days,
    )
    if not updated:
        raise _missing_or_short(db, employee_id, leave_type_code, year, days)
    _log_transaction(
        db, employee_id, leave_type_code, year, -days,
        LeaveTransactionAction.REVOKE, actor_id=actor_id, remarks=remarks,
    )
    db.flush()
    return get_balance(db, employee_id, leave_type_code, year)


def upsert_allocation(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    year: int,
    allocated: Days,
    performed_by: Optional[Any] = None,
) -> LeaveBalance:
    """
    Set the allocation of a row to an absolute value and recompute available
    from the other columns. Creates the row if absent. Commits.
    """
    value = Decimal(str(allocated))
    if value < 0:
        raise ValidationError("Allocated days cannot be negative")
    get_employee(db, employee_id, detail="Employee not found")
    get_leave_type(db, leave_type_code)

    try:
        existing = _get_or_create_balance(db, employee_id, leave_type_code, year)
        old_allocated = Decimal(str(existing.allocated))
        old_available = Decimal(str(existing.available))
        db.query(LeaveBalance).filter(LeaveBalance.id == existing.id).update(
            {
                LeaveBalance.allocated: value,
                LeaveBalance.available: (
                    value
                    + LeaveBalance.carried_forward
                    - LeaveBalance.used
                    - LeaveBalance.pending
                    - LeaveBalance.expired
                    - LeaveBalance.encashed
                ),
            },
            synchronize_session=False,
        )
        _log_transaction(
            db, employee_id, leave_type_code, year, value - old_allocated,
            LeaveTransactionAction.ALLOCATE,
            remarks=f"Allocation set to {value}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    balance = get_balance(db, employee_id, leave_type_code, year)
    logger.info(
        "Allocation for %s set to %s (was %s) by %s",
        balance_entity_id(employee_id, leave_type_code, year), value, old_allocated, performed_by,
    )
    log_audit(
        db,
        actor_id=performed_by,
        action=AuditAction.LEAVE_BALANCE_ADJUSTED,
        entity=AuditEntity.LEAVE_BALANCE,
        entity_id=balance_entity_id(employee_id, leave_type_code, year),
        description=f"Allocation of {leave_type_code} for {year} set to {value} days",
        old_values={"allocated": old_allocated, "available": old_available},
        new_values={"allocated": balance.allocated, "available": balance.available},
    )
    return balance


def initialize_balances(
    db: Session,
    employee_id: int,
    year: int,
    pro_rata: bool = False,
    today: Optional[date] = None,
) -> List[LeaveBalance]:
    """
    Ensure a row exists for every active leave type of the employee's region.

    New rows start at zero. With pro_rata, new rows are credited the
    leave type's annual allocation, pro-rated by date of joining. Commits.
    """
    employee = get_employee(db, employee_id, detail="Employee not found")
    leave_types = list_leave_types_for_region(db, employee.region)

    created = []
    try:
        for leave_type in leave_types:
            if get_balance(db, employee_id, leave_type.code, year) is not None:
                continue
            _get_or_create_balance(db, employee_id, leave_type.code, year)
            created.append(leave_type.code)
            annual = Decimal(str(leave_type.annual_allocation or 0))
            if pro_rata and annual > 0:
                if employee.date_of_joining:
                    amount = calculate_pro_rata_allocation(annual, employee.date_of_joining, employee.region, today)
                else:
                    amount = annual
                if amount > 0:
                    _apply_deltas(db, employee_id, leave_type.code, year, {"allocated": amount, "available": amount})
                    _log_transaction(
                        db, employee_id, leave_type.code, year, amount,
                        LeaveTransactionAction.ALLOCATE,
                        remarks="Annual allocation",
                    )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if created:
        logger.info("Initialized %s balances for employee %s: %s", year, employee_id, ", ".join(created))
    return get_balances(db, employee_id, year)


def carry_forward(
    db: Session,
    employee_id: int,
    leave_type_code: str,
    from_year: int,
    actor_id: Optional[int] = None,
) -> Dict[str, Decimal]:
    """
    Close one row at year end.

    The carried part of the remaining balance (capped by the leave type's
    max_carry_forward_days, zero if carry forward is not allowed) becomes
    carried_forward on next year's row; the rest expires on this year's row.
    Setting carried_forward absolutely keeps repeated runs from double
    crediting. Flushes only.
    """
    balance = get_balance(db, employee_id, leave_type_code, from_year)
    if balance is None:
        raise NoBalanceRecordError(f"No leave balance found for {leave_type_code} in {from_year}")
    leave_type = get_leave_type(db, leave_type_code)

    remaining = Decimal(str(balance.available))
    if remaining <= 0:
        return {"carried_forward": ZERO, "expired": ZERO}

    carried = ZERO
    if leave_type.carry_forward_allowed:
        cap = leave_type.max_carry_forward_days
        carried = remaining if cap is None else min(remaining, Decimal(str(cap)))
    lapsed = remaining - carried

    if lapsed > 0:
        _apply_deltas(db, employee_id, leave_type_code, from_year, {"expired": lapsed, "available": -lapsed})
        _log_transaction(
            db, employee_id, leave_type_code, from_year, -lapsed,
            LeaveTransactionAction.EXPIRE, actor_id=actor_id,
            remarks=f"Lapsed at close of {from_year}",
        )

    if carried > 0:
        next_year = from_year + 1
        next_row = _get_or_create_balance(db, employee_id, leave_type_code, next_year)
        previous = Decimal(str(next_row.carried_forward))
        db.query(LeaveBalance).filter(LeaveBalance.id == next_row.id).update(
            {
                LeaveBalance.carried_forward: carried,
                LeaveBalance.available: (
                    LeaveBalance.allocated
                    + carried
                    - LeaveBalance.used
                    - LeaveBalance.pending
                    - LeaveBalance.expired
                    - LeaveBalance.encashed
                ),
            },
            synchronize_session=False,
        )
        if carried != previous:
            _log_transaction(
                db, employee_id, leave_type_code, next_year, carried - previous,
                LeaveTransactionAction.CARRY_FORWARD, actor_id=actor_id,
                remarks=f"Carry forward from {from_year}",
            )
    db.flush()
    logger.debug(
        "Closed %s: %s carried forward, %s expired",
        balance_entity_id(employee_id, leave_type_code, from_year), carried, lapsed,
    )
    return {"carried_forward": carried, "expired": lapsed}


def run_year_close(db: Session, year: int, actor_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Year-end close for every balance row of year. Commits once.
    """
    rows = (
        db.query(LeaveBalance)
        .filter(LeaveBalance.year == year)
        .order_by(LeaveBalance.employee_id, LeaveBalance.leave_type_code)
        .all()
    )
    keys = [(row.employee_id, row.leave_type_code) for row in rows]

    total_carried = ZERO
    total_expired = ZERO
    details = []
    try:
        for employee_id, leave_type_code in keys:
            outcome = carry_forward(db, employee_id, leave_type_code, year, actor_id=actor_id)
            total_carried += outcome["carried_forward"]
            total_expired += outcome["expired"]
            if outcome["carried_forward"] or outcome["expired"]:
                details.append({
                    "employee_id": employee_id,
                    "leave_type_code": leave_type_code,
                    "carried_forward": outcome["carried_forward"],
                    "expired": outcome["expired"],
                })
        db.commit()
    except Exception:
        db.rollback()
        raise

    summary = {
        "year": year,
        "next_year": year + 1,
        "rows_processed": len(keys),
        "total_carried_forward": total_carried,
        "total_expired": total_expired,
        "details": details,
    }
    logger.info(
        "Year close %s: %d rows, %s days carried forward, %s days expired",
        year, len(keys), total_carried, total_expired,
    )
    log_audit(
        db,
        actor_id=actor_id,
        action=AuditAction.LEAVE_BALANCE_YEAR_CLOSED,
        entity=AuditEntity.LEAVE_BALANCE,
        entity_id=f"YEAR_CLOSE_{year}",
        description=f"Year close for {year}",
        new_values={key: value for key, value in summary.items() if key != "details"},
    )
    return summary


def get_transactions(
    db: Session,
    employee_id: int,
    year: Optional[int] = None,
    limit: int = 100,
) -> List[LeaveTransaction]:
    q = db.query(LeaveTransaction).filter(LeaveTransaction.employee_id == employee_id)
    if year is not None:
        q = q.filter(LeaveTransaction.year == year)
    return q.order_by(LeaveTransaction.created_at.desc(), LeaveTransaction.id.desc()).limit(limit).all()
