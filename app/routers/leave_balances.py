from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, NotFoundError
from app.core.permissions import Permission, has_permission
from app.core.schemas import ApiResponse
from app.database import get_db
from app.models.user import User
from app.routers.auth_deps import get_current_user, require_permission
from app.schemas.leave import LeaveBalanceCreate, LeaveBalanceResponse
from app.services.leave_balance_service import LeaveBalanceService

router = APIRouter(prefix="/leave-balances", tags=["leave-balances"])


@router.get("", response_model=ApiResponse[List[LeaveBalanceResponse]])
def list_balances(
    employee_id: Optional[int] = None,
    policy_id: Optional[int] = None,
    year: Optional[int] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not has_permission(current_user.role, Permission.MANAGE_BALANCES):
        if current_user.employee_id is None:
            raise AccessDeniedError("Your account is not linked to an employee profile")
        employee_id = current_user.employee_id

    items, total = LeaveBalanceService(db, actor_id=current_user.id).list_balances(
        employee_id=employee_id, policy_id=policy_id, year=year, skip=skip, limit=limit
    )
    return ApiResponse.page([LeaveBalanceResponse.model_validate(b) for b in items], total, skip, limit)


@router.get("/{balance_id}", response_model=ApiResponse[LeaveBalanceResponse])
def get_balance(
    balance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    balance = LeaveBalanceService(db, actor_id=current_user.id).get_balance(balance_id)
    if not has_permission(current_user.role, Permission.MANAGE_BALANCES) and balance.employee_id != current_user.employee_id:
        raise NotFoundError("Leave balance not found")
    return ApiResponse.ok(LeaveBalanceResponse.model_validate(balance))


@router.post("", response_model=ApiResponse[LeaveBalanceResponse], status_code=status.HTTP_201_CREATED)
def create_balance(
    payload: LeaveBalanceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_BALANCES)),
):
    balance = LeaveBalanceService(db, actor_id=current_user.id).create_balance(payload)
    return ApiResponse.ok(LeaveBalanceResponse.model_validate(balance), message="Leave balance created successfully")
