import itertools
import os
from datetime import date

import pytest
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from fastapi.testclient import TestClient

from app.database import Database, get_db
from app.main import create_app
from app.models.employee import Employee, EmploymentStatus
from app.models.leave_balance import LeaveBalance
from app.models.leave_policy import LeavePolicy, LeaveType
from app.models.user import User, UserRole
from app.services.auth import create_access_token

CURRENT_YEAR = date.today().year

_sequence = itertools.count(1)


@pytest.fixture(scope="function")
def database():
    """A fresh in-memory SQLite database per test."""
    db = Database("sqlite://", poolclass=StaticPool)
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture(scope="function")
def db_session(database):
    session = database.SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_employee(db_session):
    """Factory for employees, optionally with a linked user account."""
    def _make_employee(role=None, manager=None, status=EmploymentStatus.ACTIVE):
        n = next(_sequence)
        employee = Employee(
            employee_code=f"EMP-{n:04d}",
            first_name="Test",
            last_name=f"Person{n}",
            email=f"person{n}@example.com",
            employment_status=status,
            manager_id=manager.id if manager else None,
        )
        db_session.add(employee)
        db_session.flush()
        if role is not None:
            db_session.add(User(email=employee.email, full_name=employee.full_name, role=role, employee_id=employee.id))
        db_session.commit()
        return employee
    return _make_employee


@pytest.fixture(scope="function")
def employee(make_employee, manager):
    return make_employee(role=UserRole.EMPLOYEE, manager=manager)


@pytest.fixture(scope="function")
def manager(make_employee):
    return make_employee(role=UserRole.MANAGER)


@pytest.fixture(scope="function")
def hr(make_employee):
    return make_employee(role=UserRole.HR)


@pytest.fixture(scope="function")
def policy(db_session):
    """Annual leave, 20 days a year."""
    policy = LeavePolicy(name="Annual Leave", leave_type=LeaveType.ANNUAL, days_allowed=20.0, is_active=True)
    db_session.add(policy)
    db_session.commit()
    return policy


@pytest.fixture(scope="function")
def make_balance(db_session):
    def _make_balance(employee, policy, used=0.0, year=CURRENT_YEAR):
        balance = LeaveBalance(
            employee_id=employee.id,
            policy_id=policy.id,
            year=year,
            used_days=used,
            remaining_days=policy.days_allowed - used,
        )
        db_session.add(balance)
        db_session.commit()
        return balance
    return _make_balance


@pytest.fixture(scope="function")
def balance(make_balance, employee, policy):
    """The {used: 5, remaining: 15} ledger row."""
    return make_balance(employee, policy, used=5.0)


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens for an employee's user account."""
    def _get_token(employee):
        user = employee.user
        return create_access_token(data={"sub": str(user.id), "role": user.role.value, "type": "access"})
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _auth_headers(employee):
        return {"Authorization": f"Bearer {get_token(employee)}"}
    return _auth_headers


@pytest.fixture(scope="function")
def client(database, db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    app = create_app(database)

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
