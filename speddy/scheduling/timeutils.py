"""Time-of-day helpers for the weekly grid."""

from datetime import time
from typing import Optional, Union

TimeLike = Union[time, str]


def parse_time(value: TimeLike) -> time:
    """
    Parse a time of day.

    Accepts ``datetime.time`` or ``"HH:MM"`` / ``"HH:MM:SS"`` strings.

    Raises:
        ValueError: If the string is not a valid time
    """
    if isinstance(value, time):
        return value
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time format: {value}")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    return time(hours, minutes, seconds)


def time_to_minutes(value: TimeLike) -> int:
    """Minutes since midnight, ignoring seconds."""
    t = parse_time(value)
    return t.hour * 60 + t.minute


def minutes_to_time(minutes: int) -> time:
    """Inverse of time_to_minutes. Values past midnight are clamped to 23:59."""
    if minutes >= 24 * 60:
        return time(23, 59)
    return time(minutes // 60, minutes % 60)


def add_minutes(value: TimeLike, minutes: int) -> time:
    return minutes_to_time(time_to_minutes(value) + minutes)


def has_time_overlap(
    start1: TimeLike, end1: TimeLike, start2: TimeLike, end2: TimeLike
) -> bool:
    """
    Check whether two half-open ranges overlap.

    Ranges that only touch (one ends when the other starts) do not overlap.
    """
    return time_to_minutes(start1) < time_to_minutes(end2) and time_to_minutes(
        end1
    ) > time_to_minutes(start2)


def minutes_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    return start1 < end2 and end1 > start2


def parse_grade_levels(grade_levels: Optional[str]) -> set[str]:
    """Split a comma-separated grade list such as ``"K, 1,2"``."""
    if not grade_levels:
        return set()
    return {grade.strip() for grade in grade_levels.split(",") if grade.strip()}


def grade_matches(grade_levels: Optional[str], grade: Optional[str]) -> bool:
    if not grade:
        return False
    return grade.strip() in parse_grade_levels(grade_levels)


def format_hhmm(value: TimeLike) -> str:
    t = parse_time(value)
    return f"{t.hour:02d}:{t.minute:02d}"


def format_time_12hr(value: Optional[TimeLike]) -> str:
    """Format as ``9:05 AM``; empty string when no time is set."""
    if value is None:
        return ""
    t = parse_time(value)
    suffix = "PM" if t.hour >= 12 else "AM"
    hour12 = t.hour % 12 or 12
    return f"{hour12}:{t.minute:02d} {suffix}"


def slot_key(day: int, value: TimeLike) -> str:
    """Grid key for a slot, e.g. ``"3-09:15"``."""
    return f"{day}-{format_hhmm(value)}"
