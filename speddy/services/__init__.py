"""
Service layer - business logic orchestration.

Services load data through the repository, run the pure scheduling
functions and persist the results.
"""

from .attendance_service import AttendanceService
from .instance_service import InstanceService
from .session_service import SessionService

__all__ = ["AttendanceService", "InstanceService", "SessionService"]
