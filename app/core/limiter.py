from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def filing_rate_limit() -> str:
    """Per-client limit for filing leave requests, read on every call."""
    return f"{settings.rate_limit_per_minute}/minute"
