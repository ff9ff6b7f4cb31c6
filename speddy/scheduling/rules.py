"""Scheduling rule constants as a value object."""

from dataclasses import dataclass
from typing import Optional

from ..config import Settings, settings


@dataclass(frozen=True)
class SchedulingRules:
    """
    Limits applied when placing sessions on the weekly grid.

    Kept separate from Settings so pure functions can be called with
    explicit values in tests.
    """

    max_concurrent_sessions: int = 6
    max_consecutive_minutes: int = 60
    min_break_minutes: int = 30
    grid_start_hour: int = 7
    grid_end_hour: int = 18
    snap_minutes: int = 15
    max_range_days: int = 42

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "SchedulingRules":
        config = config or settings
        return cls(
            max_concurrent_sessions=config.MAX_CONCURRENT_SESSIONS,
            max_consecutive_minutes=config.MAX_CONSECUTIVE_MINUTES,
            min_break_minutes=config.MIN_BREAK_MINUTES,
            grid_start_hour=config.GRID_START_HOUR,
            grid_end_hour=config.GRID_END_HOUR,
            snap_minutes=config.GRID_SNAP_MINUTES,
            max_range_days=config.MAX_RANGE_DAYS,
        )

    @property
    def grid_start_minutes(self) -> int:
        return self.grid_start_hour * 60

    @property
    def grid_end_minutes(self) -> int:
        return self.grid_end_hour * 60
