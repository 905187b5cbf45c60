"""
Shared slowapi rate limiter.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from timeflow.core.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

WORKFLOW_ACTION_LIMIT = f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
