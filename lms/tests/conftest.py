"""
Pytest configuration and fixtures
"""
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.engine import Engine
from lms.db.base import Base
from lms.db.init_db import seed_leave_types
from lms.models.employee import Employee, Role
from lms.services import leave_balance_service as ledger
from lms.services.notification_service import NotificationService

# Import all models to ensure they're registered with Base.metadata
import lms.models  # noqa


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

YEAR = date.today().year


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def file_sessions(tmp_path):
    """
    Two independent sessions on a file-backed SQLite database, for
    interleaving operations the way concurrent requests would
    """
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'lms.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=file_engine)
    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    first, second = SessionFactory(), SessionFactory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        file_engine.dispose()


@pytest.fixture
def leave_types(db):
    """Default leave type catalog"""
    return seed_leave_types(db)


def make_employee(db, emp_code, role=Role.EMPLOYEE, region="IND", employment_type="FTE",
                  gender="F", manager=None, is_active=True, date_of_joining=None):
    employee = Employee(
        emp_code=emp_code,
        first_name=emp_code.title(),
        last_name="Tester",
        email=f"{emp_code.lower()}@example.com",
        role=role.value,
        region=region,
        employment_type=employment_type,
        gender=gender,
        manager_id=manager.id if manager else None,
        date_of_joining=date_of_joining or date(2020, 1, 1),
        is_active=is_active,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


@pytest.fixture
def admin(db):
    return make_employee(db, "ADM001", role=Role.ADMIN, gender="M")


@pytest.fixture
def hr(db):
    return make_employee(db, "HR001", role=Role.HR)


@pytest.fixture
def manager(db, admin):
    return make_employee(db, "MGR001", role=Role.MANAGER, gender="M", manager=admin)


@pytest.fixture
def employee(db, manager):
    return make_employee(db, "EMP001", manager=manager)


@pytest.fixture
def grant_days(db, leave_types):
    """grant_days(employee, code, days) credits the current year's ledger and commits"""
    def _grant(employee, code, days, year=YEAR):
        balance = ledger.grant(db, employee.id, code, year, Decimal(str(days)))
        db.commit()
        return balance
    return _grant


class RecordingSender:
    """Notification sender that keeps messages in memory"""

    def __init__(self):
        self.messages = []

    def __call__(self, to, subject, body):
        self.messages.append({"to": to, "subject": subject, "body": body})

    def subjects(self):
        return [m["subject"] for m in self.messages]


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return NotificationService(sender=sender, enabled=True)
