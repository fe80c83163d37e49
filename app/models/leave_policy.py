from sqlalchemy import Column, Integer, String, Float, Boolean, Enum, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.database import Base


class LeaveType(str, enum.Enum):
    ANNUAL = "ANNUAL"
    SICK = "SICK"
    MATERNITY = "MATERNITY"
    PATERNITY = "PATERNITY"
    UNPAID = "UNPAID"


class LeavePolicy(Base):
    __tablename__ = "leave_policies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    leave_type = Column(Enum(LeaveType), nullable=False, index=True)
    days_allowed = Column(Float, nullable=False, default=0.0)  # per calendar year
    is_active = Column(Boolean, default=True, nullable=False)  # policies are deactivated, never deleted
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    balances = relationship("LeaveBalance", back_populates="policy")
    requests = relationship("LeaveRequest", back_populates="policy")
