"""
Authentication and permission dependencies for FastAPI endpoints.
"""
import logging
from typing import Callable

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, AuthenticationError
from app.core.permissions import Permission, has_permission
from app.database import get_db
from app.models.user import User
from app.services import auth as auth_service

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """
    Extracts and validates the current user from the JWT token.
    """
    payload = auth_service.decode_access_token(token)

    if payload is None:
        logger.warning("Authentication failed: Invalid token")
        raise AuthenticationError()

    if payload.get("error") == "TOKEN_EXPIRED":
        logger.info("Authentication failed: Token expired")
        raise AuthenticationError("Token has expired", error_code="TOKEN_EXPIRED")

    if payload.get("type") != "access":
        logger.warning("Authentication failed: Invalid token type")
        raise AuthenticationError("Invalid token type")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        logger.warning("Authentication failed: Missing or malformed subject in token")
        raise AuthenticationError("Missing subject in token")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Authentication failed: User {user_id} not found or inactive")
        raise AuthenticationError("User not found or inactive")
    return user


def require_permission(permission: Permission) -> Callable:
    """
    Dependency factory that checks the current user's role grants a permission.

    Usage:
        @router.post("/leave-policies")
        def create(user: User = Depends(require_permission(Permission.MANAGE_POLICIES))):
            ...
    """
    def permission_checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user.role, permission):
            logger.warning(f"Access denied: user {current_user.id} lacks {permission.value}")
            raise AccessDeniedError(f"Access denied. Required permission: {permission.value}")
        return current_user
    return permission_checker
