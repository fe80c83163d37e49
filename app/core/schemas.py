from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field
from datetime import datetime, timezone

T = TypeVar("T")

class ErrorInfo(BaseModel):
    msg: str
    code: Optional[str] = None

class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every API response."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: List[ErrorInfo] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls, data: T, message: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        return cls(success=True, data=data, message=message, metadata=metadata or {})

    @classmethod
    def page(cls, data: T, total: int, skip: int, limit: int) -> "ApiResponse[T]":
        return cls(success=True, data=data, metadata={"total": total, "skip": skip, "limit": limit})

    @classmethod
    def fail(cls, message: str, code: Optional[str] = None) -> "ApiResponse[T]":
        return cls(success=False, errors=[ErrorInfo(msg=message, code=code)])
