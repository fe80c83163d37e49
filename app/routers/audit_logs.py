from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.permissions import Permission
from app.core.schemas import ApiResponse
from app.database import get_db
from app.models.user import User
from app.routers.auth_deps import require_permission
from app.schemas.audit import AuditLogResponse
from app.services.audit import AuditService

router = APIRouter(
    prefix="/audit-logs",
    tags=["audit"],
)


@router.get("", response_model=ApiResponse[List[AuditLogResponse]])
def list_audit_logs(
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_AUDIT_LOGS)),
):
    logs, total = AuditService(db, actor_id=current_user.id).list_logs(user_id, action, resource, skip, limit)
    return ApiResponse.page([AuditLogResponse.model_validate(entry) for entry in logs], total, skip, limit)


@router.get("/{log_id}", response_model=ApiResponse[AuditLogResponse])
def get_audit_log(
    log_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_AUDIT_LOGS)),
):
    entry = AuditService(db, actor_id=current_user.id).get_log(log_id)
    return ApiResponse.ok(AuditLogResponse.model_validate(entry))
