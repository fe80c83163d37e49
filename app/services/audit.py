import enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.logging import request_id_var
from app.models.audit_log import AuditLog
from app.services.base import BaseService


def sanitize(obj: Any) -> Any:
    """Make nested pydantic models, dates and enums JSON-storable."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize(i) for i in obj]
    if isinstance(obj, enum.Enum):
        return obj.value
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        resource: str,
        resource_id: Optional[int],
        old_values: Optional[Any] = None,
        new_values: Optional[Any] = None,
        user_id: Optional[int] = None,
    ) -> Optional[AuditLog]:
        """
        Record one audit entry in its own commit.
        Must be called after the business mutation has been committed:
        a failure here is logged and never propagated.
        """
        if not settings.audit_logging_enabled:
            return None
        try:
            entry = self._persist(AuditLog(
                user_id=user_id if user_id is not None else self.actor_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                old_values=sanitize(old_values),
                new_values=sanitize(new_values),
                request_id=request_id_var.get() or None,
            ))
            self.log_info(f"Audit: {action} {resource}#{resource_id}")
            return entry
        except Exception as e:
            self.db.rollback()
            self._logger.error(
                f"FAILED TO AUDIT LOG: {action} {resource}#{resource_id}: {e}",
                exc_info=True,
            )
            return None

    def _persist(self, entry: AuditLog) -> AuditLog:
        self.db.add(entry)
        self.db.commit()
        return entry

    def list_logs(
        self,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        resource: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        query = self.db.query(AuditLog)
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if action:
            query = query.filter(AuditLog.action == action.upper())
        if resource:
            query = query.filter(AuditLog.resource == resource)
        total = query.count()
        logs = query.order_by(AuditLog.id.desc()).offset(skip).limit(limit).all()
        return logs, total

    def get_log(self, log_id: int) -> AuditLog:
        entry = self.db.get(AuditLog, log_id)
        if entry is None:
            raise NotFoundError("Audit log not found")
        return entry
