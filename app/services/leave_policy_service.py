from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import InvalidStateError, NotFoundError
from app.models.leave_balance import LeaveBalance
from app.models.leave_policy import LeavePolicy, LeaveType
from app.models.leave_request import LeaveRequest
from app.schemas.leave import LeavePolicyCreate, LeavePolicyResponse, LeavePolicyUpdate
from app.services.audit import AuditService
from app.services.base import BaseService

RESOURCE = "leave_policies"

# Fields that stay editable after a policy is referenced by a balance or request
MUTABLE_WHEN_REFERENCED = {"is_active", "days_allowed"}


class LeavePolicyService(BaseService):

    def __init__(self, db: Session, actor_id: Optional[int] = None, audit: Optional[AuditService] = None):
        super().__init__(db, actor_id)
        self.audit = audit or AuditService(db, actor_id)

    def list_policies(
        self,
        leave_type: Optional[LeaveType] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LeavePolicy], int]:
        query = self.db.query(LeavePolicy)
        if leave_type:
            query = query.filter(LeavePolicy.leave_type == leave_type)
        if is_active is not None:
            query = query.filter(LeavePolicy.is_active == is_active)
        total = query.count()
        return query.order_by(LeavePolicy.id).offset(skip).limit(limit).all(), total

    def get_policy(self, policy_id: int) -> LeavePolicy:
        policy = self.db.get(LeavePolicy, policy_id)
        if policy is None:
            raise NotFoundError("Leave policy not found")
        return policy

    def create_policy(self, data: LeavePolicyCreate) -> LeavePolicy:
        policy = LeavePolicy(**data.model_dump())
        self.db.add(policy)
        self._commit()
        self.db.refresh(policy)
        self.log_info(f"Leave policy {policy.id} ({policy.leave_type.value}) created")
        self.audit.log_action("CREATE", RESOURCE, policy.id, new_values=self._snapshot(policy))
        return policy

    def update_policy(self, policy_id: int, data: LeavePolicyUpdate) -> LeavePolicy:
        """
        Administrative correction. A referenced policy only accepts changes to
        is_active and days_allowed; a new allowance is pushed to the current
        and future balance rows so that used + remaining keeps matching it.
        """
        policy = self.db.query(LeavePolicy).filter(LeavePolicy.id == policy_id).with_for_update().first()
        if policy is None:
            raise NotFoundError("Leave policy not found")

        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None and getattr(policy, field) != value
        }
        if not changes:
            return policy

        locked_fields = set(changes) - MUTABLE_WHEN_REFERENCED
        if locked_fields and self._is_referenced(policy_id):
            raise InvalidStateError(
                "Policy is in use; only is_active and days_allowed can be changed",
                details={"fields": sorted(locked_fields)},
            )

        before = self._snapshot(policy)
        if "days_allowed" in changes:
            self._reallocate_balances(policy, changes["days_allowed"])
        for field, value in changes.items():
            setattr(policy, field, value)
        self._commit()
        self.db.refresh(policy)

        self.log_info(f"Leave policy {policy.id} updated: {sorted(changes)}")
        self.audit.log_action("UPDATE", RESOURCE, policy.id, old_values=before, new_values=self._snapshot(policy))
        return policy

    def deactivate_policy(self, policy_id: int) -> LeavePolicy:
        """Policies are never deleted."""
        return self.update_policy(policy_id, LeavePolicyUpdate(is_active=False))

    def _is_referenced(self, policy_id: int) -> bool:
        has_balance = self.db.query(LeaveBalance.id).filter(LeaveBalance.policy_id == policy_id).first() is not None
        has_request = self.db.query(LeaveRequest.id).filter(LeaveRequest.policy_id == policy_id).first() is not None
        return has_balance or has_request

    def _reallocate_balances(self, policy: LeavePolicy, days_allowed: float) -> None:
        balances = (
            self.db.query(LeaveBalance)
            .filter(LeaveBalance.policy_id == policy.id, LeaveBalance.year >= date.today().year)
            .with_for_update()
            .all()
        )
        overdrawn = [b.id for b in balances if b.used_days > days_allowed]
        if overdrawn:
            raise InvalidStateError(
                f"New allowance of {days_allowed:g} days is below days already used",
                details={"leave_balance_ids": overdrawn},
            )
        for balance in balances:
            balance.remaining_days = days_allowed - balance.used_days

    @staticmethod
    def _snapshot(policy: LeavePolicy):
        return LeavePolicyResponse.model_validate(policy).model_dump(mode="json")
