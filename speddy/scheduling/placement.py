"""
Slot search for new sessions and requirement changes.

The auto-scheduler fills a student's missing weekly sessions with
conflict-free slots, at most one per day. Manual placement walks a coarser
half-hour grid and hands slots out in order. When a student's minutes or
sessions per week change, templates are resized and the ones that no
longer fit are reported.
"""

from collections import Counter
from datetime import time
from typing import Iterable, Optional

from ..domain.entities import ScheduleSession, Student, TimeSlot
from .conflicts import (CONFLICT_REASON_SEPARATOR, MANUAL_PLACEMENT_END,
                        MANUAL_PLACEMENT_START, WEEKDAYS, ScheduleContext,
                        check_bell_schedule, check_concurrent_limit,
                        check_special_activity, check_student_overlap,
                        detect_slot_conflicts, school_hours_for)
from .rules import SchedulingRules
from .timeutils import (add_minutes, format_time_12hr, has_time_overlap,
                        minutes_to_time, time_to_minutes)

AUTO_SLOT_MINUTES = 5
MANUAL_SLOT_MINUTES = 30
LAST_PLACEMENT_START = 14 * 60 + 30


def placement_start_times(step: int) -> list[time]:
    """Start times from 8:00 through 14:30 every ``step`` minutes."""
    return [
        minutes_to_time(minutes)
        for minutes in range(MANUAL_PLACEMENT_START, LAST_PLACEMENT_START + 1, step)
    ]


def make_slot(day: int, start: time, duration: int) -> TimeSlot:
    return TimeSlot(day_of_week=day, start_time=start, end_time=add_minutes(start, duration))


def _weekly_templates(sessions: Iterable[ScheduleSession]) -> list[ScheduleSession]:
    return [s for s in sessions if s.session_date is None and s.is_scheduled]


def check_auto_slot(
    student: Student,
    provider_id: str,
    slot: TimeSlot,
    context: ScheduleContext,
    rules: SchedulingRules,
    planned: Iterable[TimeSlot] = (),
) -> Optional[str]:
    """
    Why ``slot`` cannot take one of the student's sessions.

    Returns None when the slot is free. The checks are the ones move
    validation runs, plus the school day and one session per day.
    """
    day = slot.day_of_week
    start = time_to_minutes(slot.start_time)
    end = time_to_minutes(slot.end_time)

    if end > MANUAL_PLACEMENT_END:
        return "Extends beyond school hours"
    hours = school_hours_for(context.school_hours, student.grade_level, day)
    if hours is not None and (
        start < time_to_minutes(hours.start_time) or end > time_to_minutes(hours.end_time)
    ):
        return f"Outside school hours for grade {student.grade_level}"

    conflict = check_bell_schedule(
        student, context.bell_schedules, day, start, end
    ) or check_special_activity(student, context.special_activities, day, start, end)
    if conflict:
        return conflict.description

    day_templates = [s for s in _weekly_templates(context.sessions) if s.day_of_week == day]
    student_sessions = [s for s in day_templates if s.student_id == student.id]
    conflict = check_student_overlap(student_sessions, provider_id, start, end, context.providers)
    if conflict:
        return conflict.description

    if any(s.provider_id == provider_id for s in student_sessions) or any(
        p.day_of_week == day for p in planned
    ):
        return "Student already scheduled today (one session per day rule)"

    provider_sessions = [s for s in day_templates if s.provider_id == provider_id]
    conflict = check_concurrent_limit(
        provider_sessions, start, end, rules.max_concurrent_sessions
    )
    if conflict:
        return conflict.description
    return None


def find_auto_slots(
    student: Student,
    provider_id: str,
    context: ScheduleContext,
    rules: SchedulingRules,
    sessions_needed: int,
) -> list[TimeSlot]:
    """
    Free slots for up to ``sessions_needed`` sessions, one per day.

    Days with the fewest provider sessions are tried first. The first start
    time tried rotates with the provider's load so students spread across
    the day.
    """
    duration = student.minutes_per_session
    provider_sessions = [
        s for s in _weekly_templates(context.sessions) if s.provider_id == provider_id
    ]
    load = Counter(s.day_of_week for s in provider_sessions)
    days = sorted(WEEKDAYS, key=lambda d: load[d])
    starts = placement_start_times(AUTO_SLOT_MINUTES)
    offset = len(provider_sessions) % len(starts)

    found: list[TimeSlot] = []
    for day in days:
        if len(found) >= sessions_needed:
            break
        for i in range(len(starts)):
            slot = make_slot(day, starts[(offset + i) % len(starts)], duration)
            if check_auto_slot(student, provider_id, slot, context, rules, found) is None:
                found.append(slot)
                break
    return found


def find_manual_slots(
    sessions: Iterable[ScheduleSession],
    provider_id: str,
    duration: int,
    count: int,
    ignore_conflicts: bool = False,
    prefer_earliest: bool = False,
) -> list[TimeSlot]:
    """
    Half-hour slots for manual placement, Monday first.

    Slots overlapping one of the provider's sessions are skipped unless
    ``ignore_conflicts`` is set. With ``prefer_earliest`` the search stops
    once ``count`` slots are found.
    """
    sessions = list(sessions)
    slots: list[TimeSlot] = []
    for day in WEEKDAYS:
        for start in placement_start_times(MANUAL_SLOT_MINUTES):
            slot = make_slot(day, start, duration)
            if ignore_conflicts or not detect_slot_conflicts(
                day, slot.start_time, slot.end_time, sessions, provider_id
            ):
                slots.append(slot)
            if prefer_earliest and len(slots) >= count:
                return slots
    return slots


def template_order(session: ScheduleSession) -> tuple:
    """Day then start time; unscheduled templates last."""
    return (
        session.day_of_week is None,
        session.day_of_week or 0,
        time_to_minutes(session.start_time) if session.start_time else 0,
    )


def split_excess(
    templates: Iterable[ScheduleSession], target: int
) -> tuple[list[ScheduleSession], list[ScheduleSession]]:
    """Keep the earliest ``target`` templates; the rest are excess."""
    ordered = sorted(templates, key=template_order)
    return ordered[:target], ordered[target:]


def requirement_conflicts(
    templates: Iterable[ScheduleSession],
    student_sessions: Iterable[ScheduleSession],
    day_end: int,
) -> dict[str, str]:
    """
    Templates that no longer fit after a requirement change.

    A template conflicts when it ends after ``day_end`` (minutes) or
    overlaps another of the student's templates. Reasons are joined with
    " AND ".
    """
    student_sessions = _weekly_templates(student_sessions)
    reasons = {}
    for session in _weekly_templates(templates):
        problems = []
        if time_to_minutes(session.end_time) > day_end:
            problems.append(
                f"Session extends beyond {format_time_12hr(minutes_to_time(day_end))}"
            )
        if any(
            other.id != session.id
            and other.day_of_week == session.day_of_week
            and has_time_overlap(
                session.start_time, session.end_time, other.start_time, other.end_time
            )
            for other in student_sessions
        ):
            problems.append("Overlaps with another session for this student")
        if problems:
            reasons[session.id] = CONFLICT_REASON_SEPARATOR.join(problems)
    return reasons
