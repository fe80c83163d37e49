"""
Seed a local database with an admin, a manager, an employee, the default
leave policies and current-year balances.

Usage: python -m scripts.seed_demo
"""
from datetime import date

from app.core.config import settings
from app.database import Database
from app.models.employee import Employee
from app.models.leave_balance import LeaveBalance
from app.models.leave_policy import LeavePolicy, LeaveType
from app.models.user import User, UserRole
from app.services.auth import create_access_token

DEFAULT_POLICIES = [
    ("Annual Leave", LeaveType.ANNUAL, 20.0),
    ("Sick Leave", LeaveType.SICK, 10.0),
    ("Maternity Leave", LeaveType.MATERNITY, 90.0),
    ("Paternity Leave", LeaveType.PATERNITY, 10.0),
    ("Unpaid Leave", LeaveType.UNPAID, 30.0),
]

PEOPLE = [
    # code, first, last, email, role, reports to (code)
    ("EMP-001", "Ada", "Admin", "admin@example.com", UserRole.ADMIN, None),
    ("EMP-002", "Max", "Manager", "manager@example.com", UserRole.MANAGER, None),
    ("EMP-003", "Eve", "Employee", "employee@example.com", UserRole.EMPLOYEE, "EMP-002"),
]


def seed():
    database = Database(settings.database_url)
    database.create_all()
    year = date.today().year

    with database.session() as db:
        try:
            policies = []
            for name, leave_type, days in DEFAULT_POLICIES:
                policy = db.query(LeavePolicy).filter(LeavePolicy.leave_type == leave_type).first()
                if not policy:
                    policy = LeavePolicy(name=name, leave_type=leave_type, days_allowed=days, is_active=True)
                    db.add(policy)
                    print(f"Created policy: {name} ({days:g} days)")
                policies.append(policy)
            db.flush()

            employees = {}
            for code, first, last, email, role, manager_code in PEOPLE:
                employee = db.query(Employee).filter(Employee.employee_code == code).first()
                if not employee:
                    employee = Employee(
                        employee_code=code,
                        first_name=first,
                        last_name=last,
                        email=email,
                        hire_date=date(year, 1, 1),
                        manager_id=employees[manager_code].id if manager_code else None,
                    )
                    db.add(employee)
                    db.flush()
                    db.add(User(email=email, full_name=f"{first} {last}", role=role, employee_id=employee.id))
                    print(f"Created {role.value.lower()}: {email}")
                employees[code] = employee

                for policy in policies:
                    exists = db.query(LeaveBalance).filter(
                        LeaveBalance.employee_id == employee.id,
                        LeaveBalance.policy_id == policy.id,
                        LeaveBalance.year == year,
                    ).first()
                    if not exists:
                        db.add(LeaveBalance(
                            employee_id=employee.id,
                            policy_id=policy.id,
                            year=year,
                            used_days=0.0,
                            remaining_days=policy.days_allowed,
                        ))
            db.commit()

            for user in db.query(User).all():
                token = create_access_token({"sub": str(user.id), "role": user.role.value})
                print(f"{user.email} token: {token}")
        except Exception as e:
            db.rollback()
            print(f"Seeding failed: {e}")
            raise
        finally:
            database.dispose()


if __name__ == "__main__":
    seed()
