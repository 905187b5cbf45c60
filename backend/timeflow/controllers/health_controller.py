"""
Health controller.
"""

from timeflow.controllers.base_controller import BaseController
from timeflow.schemas.health import HealthResponse
from timeflow.services.health_service import HealthService


class HealthController(BaseController):
    """Reports liveness and database reachability."""

    def __init__(self, health_service: HealthService):
        self.health_service = health_service

    async def get_health(self) -> HealthResponse:
        return await self.health_service.get_health()
