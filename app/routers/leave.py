"""
Leave Request Router

HTTP endpoints for filing and processing leave requests.
Lifecycle rules live in LeaveRequestService; this module decides who may
call which transition.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, NotFoundError
from app.core.limiter import filing_rate_limit, limiter
from app.core.permissions import Permission, has_permission
from app.core.schemas import ApiResponse
from app.database import get_db
from app.models.employee import Employee
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.user import User
from app.routers.auth_deps import get_current_user, require_permission
from app.schemas.leave import LeaveRequestCreate, LeaveRequestResponse, LeaveRequestUpdate
from app.services.leave_service import LeaveRequestService

router = APIRouter(prefix="/leave-requests", tags=["leave"])


def _is_direct_report(db: Session, user: User, employee_id: int) -> bool:
    if user.employee_id is None:
        return False
    employee = db.get(Employee, employee_id)
    return employee is not None and employee.manager_id == user.employee_id


def _ensure_can_view(db: Session, user: User, leave: LeaveRequest) -> None:
    if has_permission(user.role, Permission.VIEW_ALL_LEAVE):
        return
    if user.employee_id is not None and leave.employee_id == user.employee_id:
        return
    if has_permission(user.role, Permission.VIEW_TEAM_LEAVE) and _is_direct_report(db, user, leave.employee_id):
        return
    # Do not reveal requests the caller may not see
    raise NotFoundError("Leave request not found")


def _can_decide(db: Session, user: User, leave: LeaveRequest) -> bool:
    if user.employee_id is not None and leave.employee_id == user.employee_id:
        return False  # nobody approves their own leave
    if has_permission(user.role, Permission.MANAGE_LEAVE):
        return True
    return has_permission(user.role, Permission.APPROVE_LEAVE) and _is_direct_report(db, user, leave.employee_id)


def _authorize_transition(db: Session, user: User, leave: LeaveRequest, current: LeaveStatus, target: LeaveStatus) -> None:
    is_owner = user.employee_id is not None and leave.employee_id == user.employee_id

    if target == LeaveStatus.CANCELLED:
        if current == LeaveStatus.PENDING and is_owner:
            return
        if has_permission(user.role, Permission.MANAGE_LEAVE):
            return
        raise AccessDeniedError("You are not allowed to cancel this leave request")

    if target == LeaveStatus.PENDING and is_owner:
        return

    if not _can_decide(db, user, leave):
        raise AccessDeniedError("You are not allowed to decide on this leave request")


@router.post("", response_model=ApiResponse[LeaveRequestResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(filing_rate_limit)
def create_leave_request(
    request: Request,
    payload: LeaveRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REQUEST_LEAVE)),
):
    employee_id = payload.employee_id if payload.employee_id is not None else current_user.employee_id
    if employee_id is None:
        raise AccessDeniedError("Your account is not linked to an employee profile")
    if employee_id != current_user.employee_id and not has_permission(current_user.role, Permission.MANAGE_LEAVE):
        raise AccessDeniedError("You can only file leave for yourself")

    leave = LeaveRequestService(db, actor_id=current_user.id).create_leave_request(
        employee_id=employee_id,
        policy_id=payload.policy_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        attachments=payload.attachments,
    )
    return ApiResponse.ok(LeaveRequestResponse.model_validate(leave), message="Leave request created successfully")


@router.get("", response_model=ApiResponse[List[LeaveRequestResponse]])
def list_leave_requests(
    status_filter: Optional[LeaveStatus] = Query(default=None, alias="status"),
    employee_id: Optional[int] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    manager_scope = None
    if not has_permission(current_user.role, Permission.VIEW_ALL_LEAVE):
        if has_permission(current_user.role, Permission.VIEW_TEAM_LEAVE) and employee_id != current_user.employee_id:
            manager_scope = current_user.employee_id
            if manager_scope is None:
                raise AccessDeniedError("Your account is not linked to an employee profile")
        else:
            employee_id = current_user.employee_id
            if employee_id is None:
                raise AccessDeniedError("Your account is not linked to an employee profile")

    items, total = LeaveRequestService(db, actor_id=current_user.id).list_leave_requests(
        status=status_filter,
        employee_id=employee_id,
        manager_employee_id=manager_scope,
        skip=skip,
        limit=limit,
    )
    return ApiResponse.page([LeaveRequestResponse.model_validate(i) for i in items], total, skip, limit)


@router.get("/{request_id}", response_model=ApiResponse[LeaveRequestResponse])
def get_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    leave = LeaveRequestService(db, actor_id=current_user.id).get_leave_request(request_id)
    _ensure_can_view(db, current_user, leave)
    return ApiResponse.ok(LeaveRequestResponse.model_validate(leave))


@router.put("/{request_id}", response_model=ApiResponse[LeaveRequestResponse])
def update_leave_request(
    request_id: int,
    payload: LeaveRequestUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Approve, reject, cancel or re-submit a leave request."""
    service = LeaveRequestService(db, actor_id=current_user.id)
    leave = service.get_leave_request(request_id)
    _ensure_can_view(db, current_user, leave)
    # The service re-checks this status under the row lock
    current = LeaveStatus(leave.status)
    _authorize_transition(db, current_user, leave, current, payload.status)

    leave = service.update_leave_request(
        request_id,
        status=payload.status,
        approved_by=current_user.employee_id,
        rejection_reason=payload.rejection_reason,
        cancellation_reason=payload.cancellation_reason,
        expected_status=current,
    )
    return ApiResponse.ok(LeaveRequestResponse.model_validate(leave), message="Leave request updated successfully")


@router.delete("/{request_id}", response_model=ApiResponse[dict])
def delete_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_LEAVE)),
):
    LeaveRequestService(db, actor_id=current_user.id).delete_leave_request(request_id)
    return ApiResponse.ok(None, message="Leave request deleted successfully")
