"""
API routers for scheduling service endpoints.
"""

from . import admin, attendance, health, schedule, sessions, students

__all__ = ["admin", "attendance", "health", "schedule", "sessions", "students"]
