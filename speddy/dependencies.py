"""
Shared dependencies for the application.

Provides dependency injection functions used across routers. Tests replace
them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from .config import settings
from .repositories.schedule_repository import ScheduleRepository
from .scheduling.rules import SchedulingRules
from .services.attendance_service import AttendanceService
from .services.instance_service import InstanceService
from .services.session_service import SessionService


@lru_cache
def get_repository() -> ScheduleRepository:
    return ScheduleRepository()


def get_session_service() -> SessionService:
    """Session service bound to the shared repository and configured rules."""
    return SessionService(get_repository(), SchedulingRules.from_settings(settings))


def get_instance_service() -> InstanceService:
    return InstanceService(
        get_repository(),
        batch_size=settings.INSTANCE_BATCH_SIZE,
        page_size=settings.TEMPLATE_PAGE_SIZE,
    )


def get_attendance_service() -> AttendanceService:
    return AttendanceService(get_repository())
