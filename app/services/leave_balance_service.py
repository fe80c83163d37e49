from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, InsufficientBalanceError, NotFoundError
from app.models.employee import Employee
from app.models.leave_balance import LeaveBalance
from app.models.leave_policy import LeavePolicy
from app.schemas.leave import LeaveBalanceCreate, LeaveBalanceResponse
from app.services.audit import AuditService
from app.services.base import BaseService

RESOURCE = "leave_balances"


class LeaveBalanceService(BaseService):
    """Opens ledger rows and reads them. Only the request lifecycle moves days."""

    def __init__(self, db: Session, actor_id: Optional[int] = None, audit: Optional[AuditService] = None):
        super().__init__(db, actor_id)
        self.audit = audit or AuditService(db, actor_id)

    def list_balances(
        self,
        employee_id: Optional[int] = None,
        policy_id: Optional[int] = None,
        year: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LeaveBalance], int]:
        query = self.db.query(LeaveBalance)
        if employee_id is not None:
            query = query.filter(LeaveBalance.employee_id == employee_id)
        if policy_id is not None:
            query = query.filter(LeaveBalance.policy_id == policy_id)
        if year is not None:
            query = query.filter(LeaveBalance.year == year)
        total = query.count()
        items = query.order_by(LeaveBalance.year.desc(), LeaveBalance.id).offset(skip).limit(limit).all()
        return items, total

    def get_balance(self, balance_id: int) -> LeaveBalance:
        balance = self.db.get(LeaveBalance, balance_id)
        if balance is None:
            raise NotFoundError("Leave balance not found")
        return balance

    def create_balance(self, data: LeaveBalanceCreate) -> LeaveBalance:
        if self.db.get(Employee, data.employee_id) is None:
            raise NotFoundError("Employee not found")
        policy = self.db.get(LeavePolicy, data.policy_id)
        if policy is None:
            raise NotFoundError("Leave policy not found")

        existing = self.db.query(LeaveBalance).filter(
            LeaveBalance.employee_id == data.employee_id,
            LeaveBalance.policy_id == data.policy_id,
            LeaveBalance.year == data.year,
        ).first()
        if existing is not None:
            raise ConflictError(
                "A leave balance already exists for this employee, policy and year",
                details={"leave_balance_id": existing.id},
            )
        if data.used_days > policy.days_allowed:
            raise InsufficientBalanceError(
                f"Used days ({data.used_days:g}) exceed the policy allowance ({policy.days_allowed:g})"
            )

        balance = LeaveBalance(
            employee_id=data.employee_id,
            policy_id=data.policy_id,
            year=data.year,
            used_days=data.used_days,
            remaining_days=policy.days_allowed - data.used_days,
        )
        self.db.add(balance)
        self._commit()
        self.db.refresh(balance)

        self.log_info(f"Leave balance {balance.id} opened for employee {balance.employee_id} ({balance.year})")
        self.audit.log_action(
            "CREATE", RESOURCE, balance.id,
            new_values=LeaveBalanceResponse.model_validate(balance).model_dump(mode="json"),
        )
        return balance
