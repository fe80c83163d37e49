# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    employee, user,
    leave_policy, leave_balance, leave_request,
    audit_log,
)

# Explicit class exports for cleaner imports
from .employee import Employee, EmploymentStatus
from .user import User, UserRole
from .leave_policy import LeavePolicy, LeaveType
from .leave_balance import LeaveBalance
from .leave_request import LeaveRequest, LeaveStatus
from .audit_log import AuditLog

__all__ = [
    "Employee",
    "EmploymentStatus",
    "User",
    "UserRole",
    "LeavePolicy",
    "LeaveType",
    "LeaveBalance",
    "LeaveRequest",
    "LeaveStatus",
    "AuditLog",
]
