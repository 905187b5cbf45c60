"""
Health check response schemas.
"""

from pydantic import BaseModel
from typing import Dict


class HealthResponse(BaseModel):
    """Service status with the result of each dependency check."""
    status: str
    uptime: str
    version: str
    environment: str
    checks: Dict[str, str] = {}
