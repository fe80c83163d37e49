from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.permissions import Permission
from app.core.schemas import ApiResponse
from app.database import get_db
from app.models.leave_policy import LeaveType
from app.models.user import User
from app.routers.auth_deps import get_current_user, require_permission
from app.schemas.leave import LeavePolicyCreate, LeavePolicyResponse, LeavePolicyUpdate
from app.services.leave_policy_service import LeavePolicyService

router = APIRouter(prefix="/leave-policies", tags=["leave-policies"])


@router.get("", response_model=ApiResponse[List[LeavePolicyResponse]])
def list_policies(
    leave_type: Optional[LeaveType] = None,
    is_active: Optional[bool] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = LeavePolicyService(db, actor_id=current_user.id).list_policies(leave_type, is_active, skip, limit)
    return ApiResponse.page([LeavePolicyResponse.model_validate(p) for p in items], total, skip, limit)


@router.get("/{policy_id}", response_model=ApiResponse[LeavePolicyResponse])
def get_policy(
    policy_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    policy = LeavePolicyService(db, actor_id=current_user.id).get_policy(policy_id)
    return ApiResponse.ok(LeavePolicyResponse.model_validate(policy))


@router.post("", response_model=ApiResponse[LeavePolicyResponse], status_code=status.HTTP_201_CREATED)
def create_policy(
    payload: LeavePolicyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_POLICIES)),
):
    policy = LeavePolicyService(db, actor_id=current_user.id).create_policy(payload)
    return ApiResponse.ok(LeavePolicyResponse.model_validate(policy), message="Leave policy created successfully")


@router.patch("/{policy_id}", response_model=ApiResponse[LeavePolicyResponse])
def update_policy(
    policy_id: int,
    payload: LeavePolicyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_POLICIES)),
):
    policy = LeavePolicyService(db, actor_id=current_user.id).update_policy(policy_id, payload)
    return ApiResponse.ok(LeavePolicyResponse.model_validate(policy), message="Leave policy updated successfully")


@router.delete("/{policy_id}", response_model=ApiResponse[LeavePolicyResponse])
def deactivate_policy(
    policy_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_POLICIES)),
):
    """Policies are deactivated, never deleted."""
    policy = LeavePolicyService(db, actor_id=current_user.id).deactivate_policy(policy_id)
    return ApiResponse.ok(LeavePolicyResponse.model_validate(policy), message="Leave policy deactivated")
