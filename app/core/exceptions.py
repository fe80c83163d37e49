from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not validate credentials", error_code: str = "AUTH_FAILED"):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code
        )
        self.headers = {"WWW-Authenticate": "Bearer"}

class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )

class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=404, error_code="NOT_FOUND", details=details)

class InvalidReferenceError(AppException):
    """The referenced employee or policy exists but cannot be used."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="INVALID_REFERENCE", details=details)

class InvalidRangeError(AppException):
    def __init__(self, message: str = "Start date must be on or before end date", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="INVALID_RANGE", details=details)

class NoBalanceError(AppException):
    def __init__(self, message: str = "No leave balance found for this policy and year", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="NO_BALANCE", details=details)

class InsufficientBalanceError(AppException):
    def __init__(self, message: str = "Insufficient leave balance", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="INSUFFICIENT_BALANCE", details=details)

class OverlappingRequestError(AppException):
    def __init__(self, message: str = "Leave request overlaps an existing request", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="OVERLAPPING_REQUEST", details=details)

class InvalidTransitionError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="INVALID_TRANSITION", details=details)

class InvalidStateError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="INVALID_STATE", details=details)

class ConflictError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="CONFLICT", details=details)
