"""
Dependency injection container using dependency-injector.
Wires the notification sink, validation rules and controllers.
"""

from dependency_injector import containers, providers

from timeflow.core.config import settings
from timeflow.services.health_service import HealthService
from timeflow.services.notification_service import NotificationService
from timeflow.services.timesheet_service import build_validation_rules
from timeflow.controllers.health_controller import HealthController


class Container(containers.DeclarativeContainer):
    """Dependency injection container."""

    # Configuration
    config = providers.Configuration()

    # Services
    health_service = providers.Singleton(
        HealthService,
    )

    notification_service = providers.Singleton(
        NotificationService,
    )

    # Rules are rebuilt per call so "today" stays current
    validation_rules = providers.Factory(
        build_validation_rules,
        app_settings=settings,
    )

    # Controllers
    health_controller = providers.Factory(
        HealthController,
        health_service=health_service,
    )


# Global container instance
_container: Container = None


def get_container() -> Container:
    """Get the global dependency injection container."""
    global _container
    if _container is None:
        _container = Container()
        _container.config.from_dict({
            "database_url": settings.DATABASE_URL,
        })
    return _container
