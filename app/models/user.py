"""
User Model with RBAC.
A user is the authenticated principal; an employee is the HR record it may be linked to.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base


class UserRole(str, enum.Enum):
    """
    User roles, most to least privileged.

    - ADMIN: Full access, including audit logs
    - HR: Leave administration (policies, balances, any request)
    - MANAGER: Approves leave for direct reports
    - EMPLOYEE: Self-service access
    """
    ADMIN = "ADMIN"
    HR = "HR"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.EMPLOYEE, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("Employee", back_populates="user")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"
