"""
API v1 router that aggregates all endpoint routers.
All routes require a caller identity except health.
"""

from fastapi import APIRouter, Depends
from timeflow.api.v1.middleware import require_authentication

from timeflow.api.v1.endpoints import (
    health,
    timesheets,
)

api_router = APIRouter()

# Public routes
api_router.include_router(health.router, tags=["health"])

# Protected routes
api_router.include_router(
    timesheets.router,
    prefix="/timesheets",
    tags=["timesheets"],
    dependencies=[Depends(require_authentication)],
)
