from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime
from typing import List, Optional

from app.models.leave_policy import LeaveType
from app.models.leave_request import LeaveStatus

# --- Policies ---

class LeavePolicyCreate(BaseModel):
    name: str = Field(min_length=1)
    leave_type: LeaveType
    days_allowed: float = Field(ge=0)
    is_active: bool = True

class LeavePolicyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    leave_type: Optional[LeaveType] = None
    days_allowed: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

class LeavePolicyResponse(BaseModel):
    id: int
    name: str
    leave_type: LeaveType
    days_allowed: float
    is_active: bool

    model_config = ConfigDict(from_attributes=True)

# --- Balances ---

class LeaveBalanceCreate(BaseModel):
    employee_id: int
    policy_id: int
    year: int = Field(ge=1900, le=9999)
    used_days: float = Field(default=0.0, ge=0)

class LeaveBalanceResponse(BaseModel):
    id: int
    employee_id: int
    policy_id: int
    year: int
    used_days: float
    remaining_days: float

    model_config = ConfigDict(from_attributes=True)

# --- Requests ---

class LeaveRequestCreate(BaseModel):
    policy_id: int
    start_date: date
    end_date: date
    reason: str = Field(min_length=1)
    attachments: List[str] = Field(default_factory=list)
    # Only HR/Admin may file on behalf of another employee
    employee_id: Optional[int] = None

class LeaveRequestUpdate(BaseModel):
    status: LeaveStatus
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    @model_validator(mode="after")
    def rejection_needs_reason(self):
        if self.status == LeaveStatus.REJECTED and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when rejecting a request")
        return self

class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    policy_id: int
    year: int
    start_date: date
    end_date: date
    days: int
    reason: str
    status: LeaveStatus
    attachments: List[str] = Field(default_factory=list)
    applied_at: Optional[datetime] = None
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejected_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
