"""
Leave Request Service Layer

Owns the leave request lifecycle and every mutation of the leave balance
ledger. Routers translate HTTP into calls on LeaveRequestService; nothing
else writes to leave_balances once a row exists.

Architecture:
- Router -> Service (this module) -> Models
- All checks run before the first write, so a failure never leaves partial state
- A status change and its balance change are committed together or not at all
- The audit entry is written after the commit and may fail without undoing it
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import (
    InsufficientBalanceError,
    InvalidRangeError,
    InvalidReferenceError,
    InvalidStateError,
    InvalidTransitionError,
    NoBalanceError,
    NotFoundError,
    OverlappingRequestError,
)
from app.models.employee import Employee
from app.models.leave_balance import LeaveBalance
from app.models.leave_policy import LeavePolicy
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.schemas.leave import LeaveRequestResponse
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.leave_rules import ACTIVE_STATUSES, count_leave_days, ensure_transition

RESOURCE = "leave_requests"


class LeaveRequestService(BaseService):

    def __init__(self, db: Session, actor_id: Optional[int] = None, audit: Optional[AuditService] = None):
        super().__init__(db, actor_id)
        self.audit = audit or AuditService(db, actor_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_leave_request(self, request_id: int) -> LeaveRequest:
        leave = self.db.get(LeaveRequest, request_id)
        if leave is None:
            raise NotFoundError("Leave request not found")
        return leave

    def list_leave_requests(
        self,
        status: Optional[LeaveStatus] = None,
        employee_id: Optional[int] = None,
        manager_employee_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LeaveRequest], int]:
        query = self.db.query(LeaveRequest)
        if status:
            query = query.filter(LeaveRequest.status == LeaveStatus(status).value)
        if employee_id is not None:
            query = query.filter(LeaveRequest.employee_id == employee_id)
        if manager_employee_id is not None:
            query = query.join(Employee, LeaveRequest.employee_id == Employee.id).filter(
                Employee.manager_id == manager_employee_id
            )
        total = query.count()
        items = query.order_by(LeaveRequest.applied_at.desc(), LeaveRequest.id.desc()).offset(skip).limit(limit).all()
        return items, total

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_leave_request(
        self,
        employee_id: int,
        policy_id: int,
        start_date: date,
        end_date: date,
        reason: str,
        attachments: Optional[List[str]] = None,
    ) -> LeaveRequest:
        """
        File a new PENDING request.

        The balance check here is a feasibility check only: days are
        deducted when the request is approved.
        """
        # Row lock serializes concurrent filings for the same employee
        employee = self.db.query(Employee).filter(Employee.id == employee_id).with_for_update().populate_existing().first()
        if employee is None:
            raise NotFoundError("Employee not found")
        if not employee.is_active:
            raise InvalidReferenceError(
                "Employee is not in active employment",
                details={"employee_id": employee_id, "employment_status": employee.employment_status.value},
            )

        policy = self.db.get(LeavePolicy, policy_id)
        if policy is None:
            raise NotFoundError("Leave policy not found")
        if not policy.is_active:
            raise InvalidReferenceError("Leave policy is inactive", details={"policy_id": policy_id})

        if start_date > end_date:
            raise InvalidRangeError(
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
            )
        days = count_leave_days(start_date, end_date)

        year = date.today().year
        balance = self._find_balance(employee_id, policy_id, year)
        if balance is None:
            raise NoBalanceError(details={"employee_id": employee_id, "policy_id": policy_id, "year": year})
        if balance.remaining_days < days:
            raise InsufficientBalanceError(
                f"Insufficient balance. Requested: {days}, Remaining: {balance.remaining_days:g}",
                details={"requested": days, "remaining": balance.remaining_days},
            )

        self._ensure_no_overlap(employee_id, start_date, end_date)

        leave = LeaveRequest(
            employee_id=employee_id,
            policy_id=policy_id,
            year=year,
            start_date=start_date,
            end_date=end_date,
            days=days,
            reason=reason,
            attachments=list(attachments or []),
            status=LeaveStatus.PENDING.value,
        )
        self.db.add(leave)
        self._commit()
        self.db.refresh(leave)

        self.log_info(
            f"Leave request {leave.id} filed for employee {employee_id} ({days} days)",
            leave_request_id=leave.id,
        )
        self.audit.log_action("CREATE", RESOURCE, leave.id, new_values=self._snapshot(leave))
        return leave

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_leave_request(
        self,
        request_id: int,
        status: LeaveStatus,
        approved_by: Optional[int] = None,
        rejection_reason: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
        expected_status: Optional[LeaveStatus] = None,
    ) -> LeaveRequest:
        """
        Move a request through the lifecycle:

            PENDING  -> APPROVED   deducts the balance
            PENDING  -> REJECTED   needs a rejection reason
            PENDING  -> CANCELLED
            APPROVED -> CANCELLED  restores the balance
            REJECTED -> PENDING    re-submission

        The status update is conditional on the status that was read, and
        the balance update is conditional on the balance that was read, so
        a concurrent writer makes this call fail instead of double-counting.

        Callers that authorized the change against a status they read earlier
        pass it as `expected_status`; the call fails if the locked row has
        since moved to another status.
        """
        leave = self.db.query(LeaveRequest).filter(LeaveRequest.id == request_id).with_for_update().populate_existing().first()
        if leave is None:
            raise NotFoundError("Leave request not found")

        current = LeaveStatus(leave.status)
        target = LeaveStatus(status)
        if expected_status is not None and LeaveStatus(expected_status) != current:
            raise InvalidTransitionError(
                "Leave request was modified concurrently; reload and retry",
                details={"expected_status": LeaveStatus(expected_status).value, "status": current.value},
            )
        ensure_transition(current, target)

        before = self._snapshot(leave)
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {"status": target.value, "updated_at": now}

        if target == LeaveStatus.REJECTED:
            if not (rejection_reason or "").strip():
                raise InvalidTransitionError("A rejection reason is required to reject a leave request")
            values.update(rejection_reason=rejection_reason, rejected_at=now)
        elif target == LeaveStatus.PENDING:
            self._ensure_no_overlap(leave.employee_id, leave.start_date, leave.end_date, exclude_id=leave.id)
            values.update(rejection_reason=None, rejected_at=None)
        elif target == LeaveStatus.APPROVED:
            values.update(approved_by_id=approved_by, approved_at=now)
        elif target == LeaveStatus.CANCELLED:
            values.update(cancellation_reason=cancellation_reason, cancelled_at=now)

        try:
            if target == LeaveStatus.APPROVED:
                self._deduct_balance(leave)
            elif current == LeaveStatus.APPROVED and target == LeaveStatus.CANCELLED:
                self._restore_balance(leave)

            result = self.db.execute(
                update(LeaveRequest)
                .where(LeaveRequest.id == leave.id, LeaveRequest.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError(
                    "Leave request was modified concurrently; reload and retry",
                    details={"expected_status": current.value},
                )
        except Exception:
            self.db.rollback()
            raise

        self._commit()
        self.db.refresh(leave)

        self.log_info(
            f"Leave request {leave.id}: {current.value} -> {target.value}",
            leave_request_id=leave.id,
        )
        self.audit.log_action("UPDATE", RESOURCE, leave.id, old_values=before, new_values=self._snapshot(leave))
        return leave

    def approve(self, request_id: int, approved_by: Optional[int] = None) -> LeaveRequest:
        return self.update_leave_request(request_id, LeaveStatus.APPROVED, approved_by=approved_by)

    def reject(self, request_id: int, rejection_reason: str) -> LeaveRequest:
        return self.update_leave_request(request_id, LeaveStatus.REJECTED, rejection_reason=rejection_reason)

    def cancel(self, request_id: int, cancellation_reason: Optional[str] = None) -> LeaveRequest:
        return self.update_leave_request(request_id, LeaveStatus.CANCELLED, cancellation_reason=cancellation_reason)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_leave_request(self, request_id: int) -> None:
        leave = self.db.query(LeaveRequest).filter(LeaveRequest.id == request_id).with_for_update().populate_existing().first()
        if leave is None:
            raise NotFoundError("Leave request not found")
        if leave.status != LeaveStatus.PENDING.value:
            raise InvalidStateError(
                "Only pending requests can be deleted",
                details={"status": leave.status},
            )

        before = self._snapshot(leave)
        self.db.delete(leave)
        self._commit()

        self.log_info(f"Leave request {request_id} deleted", leave_request_id=request_id)
        self.audit.log_action("DELETE", RESOURCE, request_id, old_values=before)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_balance(self, employee_id: int, policy_id: int, year: int, lock: bool = False) -> Optional[LeaveBalance]:
        query = self.db.query(LeaveBalance).filter(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.policy_id == policy_id,
            LeaveBalance.year == year,
        )
        if lock:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _ensure_no_overlap(self, employee_id: int, start_date: date, end_date: date, exclude_id: Optional[int] = None):
        # Same predicate as leave_rules.ranges_overlap
        query = self.db.query(LeaveRequest).filter(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.filter(LeaveRequest.id != exclude_id)
        conflict = query.first()
        if conflict is not None:
            raise OverlappingRequestError(
                f"Leave dates overlap request {conflict.id} "
                f"({conflict.start_date.isoformat()} to {conflict.end_date.isoformat()})",
                details={"conflicting_request_id": conflict.id},
            )

    def _deduct_balance(self, leave: LeaveRequest) -> None:
        balance = self._find_balance(leave.employee_id, leave.policy_id, leave.year, lock=True)
        if balance is None:
            raise NoBalanceError(
                details={"employee_id": leave.employee_id, "policy_id": leave.policy_id, "year": leave.year}
            )
        insufficient = InsufficientBalanceError(
            f"Insufficient balance to approve now. Requested: {leave.days}, Remaining: {balance.remaining_days:g}",
            details={"requested": leave.days, "remaining": balance.remaining_days},
        )
        if balance.remaining_days < leave.days:
            self.log_warning(f"Approval of leave request {leave.id} blocked by balance", leave_request_id=leave.id)
            raise insufficient

        result = self.db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == balance.id, LeaveBalance.remaining_days >= leave.days)
            .values(
                used_days=LeaveBalance.used_days + leave.days,
                remaining_days=LeaveBalance.remaining_days - leave.days,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise insufficient

    def _restore_balance(self, leave: LeaveRequest) -> None:
        balance = self._find_balance(leave.employee_id, leave.policy_id, leave.year, lock=True)
        if balance is None:
            raise NoBalanceError(
                details={"employee_id": leave.employee_id, "policy_id": leave.policy_id, "year": leave.year}
            )
        allowed = balance.policy.days_allowed
        new_used = max(balance.used_days - leave.days, 0.0)
        new_remaining = min(balance.remaining_days + leave.days, allowed)
        if new_used != balance.used_days - leave.days or new_remaining != balance.remaining_days + leave.days:
            self.log_warning(
                f"Clamped balance {balance.id} while restoring leave request {leave.id}",
                leave_balance_id=balance.id,
            )

        result = self.db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.id == balance.id,
                LeaveBalance.used_days == balance.used_days,
                LeaveBalance.remaining_days == balance.remaining_days,
            )
            .values(used_days=new_used, remaining_days=new_remaining)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError("Leave balance was modified concurrently; reload and retry")

    @staticmethod
    def _snapshot(leave: LeaveRequest) -> Dict[str, Any]:
        return LeaveRequestResponse.model_validate(leave).model_dump(mode="json")
