"""
Employee roster lookups used by the leave core
"""
from typing import List
from sqlalchemy.orm import Session
from lms.core.exceptions import NotFoundError
from lms.models.employee import Employee


def get_employee(db: Session, employee_id: int, detail: str = "User not found") -> Employee:
    """
    Fetch an employee by id

    Raises:
        NotFoundError: If the employee does not exist
    """
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(detail)
    return employee


def lock_employee(db: Session, employee_id: int) -> Employee:
    """Fetch an employee row FOR UPDATE so submissions by the same employee serialize"""
    employee = (
        db.query(Employee)
        .filter(Employee.id == employee_id)
        .with_for_update()
        .first()
    )
    if not employee:
        raise NotFoundError("User not found")
    return employee


def get_cohort(db: Session, region: str, employment_type: str) -> List[Employee]:
    """All active employees sharing a (region, employment_type) pair"""
    return (
        db.query(Employee)
        .filter(
            Employee.is_active == True,
            Employee.region == region,
            Employee.employment_type == employment_type,
        )
        .order_by(Employee.id)
        .all()
    )


def get_active_employees(db: Session, employee_ids: List[int]) -> List[Employee]:
    if not employee_ids:
        return []
    return (
        db.query(Employee)
        .filter(Employee.id.in_(employee_ids), Employee.is_active == True)
        .order_by(Employee.id)
        .all()
    )


def direct_reports_query(db: Session, manager_id: int):
    """Active employees whose manager_id is manager_id"""
    return db.query(Employee).filter(Employee.manager_id == manager_id, Employee.is_active == True)
