"""
Repository layer - data access for schedule sessions and school calendars.
"""

from .schedule_repository import ScheduleRepository

__all__ = ["ScheduleRepository"]
