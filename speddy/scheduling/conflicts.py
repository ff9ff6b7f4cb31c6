"""
Conflict detection for the weekly schedule.

Checks a proposed session placement against bell-schedule periods, class
special activities, the provider's concurrent-session capacity, per-student
consecutive and break rules, and the student's other sessions.
"""

from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, Mapping, Optional

import structlog

from ..domain.entities import (BellSchedule, Conflict, ConflictType, Profile,
                               ScheduleSession, SchoolHours, SpecialActivity,
                               Student, ValidationResult)
from .filters import role_display_name
from .instances import is_temporary_id
from .rules import SchedulingRules
from .timeutils import (format_hhmm, grade_matches, has_time_overlap,
                        minutes_overlap, minutes_to_time, slot_key,
                        time_to_minutes)

logger = structlog.get_logger(__name__)

WEEKDAYS = (1, 2, 3, 4, 5)
MANUAL_PLACEMENT_START = 8 * 60
MANUAL_PLACEMENT_END = 15 * 60
CONFLICT_REASON_SEPARATOR = " AND "


@dataclass
class ScheduleContext:
    """
    Everything needed to judge a placement for one student.

    ``sessions`` holds the provider's templates and the student's templates
    with any provider; checks pick the subset they need.
    """

    student: Optional[Student]
    sessions: list[ScheduleSession] = field(default_factory=list)
    bell_schedules: list[BellSchedule] = field(default_factory=list)
    special_activities: list[SpecialActivity] = field(default_factory=list)
    school_hours: list[SchoolHours] = field(default_factory=list)
    providers: Mapping[str, Profile] = field(default_factory=dict)


@dataclass(frozen=True)
class _Range:
    start: int
    end: int

    @classmethod
    def of(cls, session: ScheduleSession) -> "_Range":
        return cls(time_to_minutes(session.start_time), time_to_minutes(session.end_time))


def _time_label(start, end) -> str:
    return f"{format_hhmm(start)} - {format_hhmm(end)}"


def _other_templates(
    sessions: Iterable[ScheduleSession], exclude_id: Optional[str], day: int
) -> list[ScheduleSession]:
    return [
        s
        for s in sessions
        if s.id != exclude_id
        and s.session_date is None
        and s.is_scheduled
        and s.day_of_week == day
    ]


def check_bell_schedule(
    student: Optional[Student],
    bell_schedules: Iterable[BellSchedule],
    day: int,
    start: int,
    end: int,
) -> Optional[Conflict]:
    if student is None or not student.school_id:
        return None
    for bell in bell_schedules:
        if bell.day_of_week != day or bell.school_id != student.school_id:
            continue
        if not grade_matches(bell.grade_level, student.grade_level):
            continue
        if minutes_overlap(start, end, time_to_minutes(bell.start_time), time_to_minutes(bell.end_time)):
            return Conflict(
                type=ConflictType.BELL_SCHEDULE,
                description=(
                    f'Conflicts with bell schedule period "{bell.period_name}" '
                    f"({_time_label(bell.start_time, bell.end_time)})"
                ),
                conflicting_item={"id": bell.id, "period_name": bell.period_name},
            )
    return None


def check_special_activity(
    student: Optional[Student],
    activities: Iterable[SpecialActivity],
    day: int,
    start: int,
    end: int,
) -> Optional[Conflict]:
    if student is None or not student.teacher_name or not student.school_id:
        return None
    for activity in activities:
        if activity.day_of_week != day or activity.teacher_name != student.teacher_name:
            continue
        if activity.school_id != student.school_id:
            continue
        if minutes_overlap(
            start, end, time_to_minutes(activity.start_time), time_to_minutes(activity.end_time)
        ):
            return Conflict(
                type=ConflictType.SPECIAL_ACTIVITY,
                description=(
                    f'Conflicts with special activity "{activity.activity_name}" with '
                    f"{activity.teacher_name} ({_time_label(activity.start_time, activity.end_time)})"
                ),
                conflicting_item={"id": activity.id, "activity_name": activity.activity_name},
            )
    return None


def max_concurrent(sessions: Iterable[ScheduleSession], start: int, end: int) -> int:
    """
    Highest number of sessions running at any minute of [start, end).

    The count only changes at session starts, so it is enough to sample the
    range start and every session start inside the range.
    """
    ranges = [_Range.of(s) for s in sessions]
    points = {start} | {r.start for r in ranges if start < r.start < end}
    return max(
        (sum(1 for r in ranges if r.start <= point < r.end) for point in points),
        default=0,
    )


def check_concurrent_limit(
    provider_sessions: list[ScheduleSession], start: int, end: int, limit: int
) -> Optional[Conflict]:
    peak = max_concurrent(provider_sessions, start, end)
    if peak >= limit:
        return Conflict(
            type=ConflictType.RULE_VIOLATION,
            description=f"Maximum concurrent session limit ({limit}) would be exceeded",
            conflicting_item={"max_concurrent": peak + 1},
        )
    return None


def check_consecutive_rule(
    student_sessions: list[ScheduleSession], start: int, end: int, max_minutes: int
) -> Optional[Conflict]:
    duration = end - start
    for session in student_sessions:
        other = _Range.of(session)
        if other.end == start or end == other.start:
            total = duration + (other.end - other.start)
            if total > max_minutes:
                return Conflict(
                    type=ConflictType.RULE_VIOLATION,
                    description=(
                        f"Would create consecutive sessions longer than {max_minutes} "
                        f"minutes ({total} minutes total)"
                    ),
                    conflicting_item={"total_minutes": total, "session_id": session.id},
                )
    return None


def check_break_rule(
    student_sessions: list[ScheduleSession], start: int, end: int, min_break: int
) -> Optional[Conflict]:
    for session in student_sessions:
        other = _Range.of(session)
        gap_before = start - other.end
        gap_after = other.start - end
        if 0 < gap_before < min_break or 0 < gap_after < min_break:
            gap = gap_before if gap_before > 0 else gap_after
            return Conflict(
                type=ConflictType.RULE_VIOLATION,
                description=(
                    f"Requires at least {min_break} minutes break between non-consecutive "
                    f"sessions (only {gap} minutes gap)"
                ),
                conflicting_item={"gap_minutes": gap, "session_id": session.id},
            )
    return None


def check_student_overlap(
    student_sessions: list[ScheduleSession],
    provider_id: Optional[str],
    start: int,
    end: int,
    providers: Mapping[str, Profile],
) -> Optional[Conflict]:
    for session in student_sessions:
        other = _Range.of(session)
        if not minutes_overlap(start, end, other.start, other.end):
            continue
        profile = providers.get(session.provider_id) if session.provider_id else None
        if session.provider_id != provider_id and profile is not None:
            description = (
                f"Student has {session.service_type or 'a session'} with "
                f"{profile.full_name} ({role_display_name(profile.role)}) at this time"
            )
        else:
            description = (
                "Student already has a session scheduled at "
                f"{_time_label(session.start_time, session.end_time)}"
            )
        return Conflict(
            type=ConflictType.SESSION,
            description=description,
            conflicting_item={"session_id": session.id, "provider_id": session.provider_id},
        )
    return None


def validate_session_move(
    session: ScheduleSession,
    target_day: int,
    target_start: time,
    target_end: time,
    context: ScheduleContext,
    rules: SchedulingRules,
    today: date,
) -> ValidationResult:
    """
    Validate moving ``session`` to a new day and time.

    Every conflict category is checked and the first hit of each is
    reported; ``error`` carries the first conflict's description.
    """
    if is_temporary_id(session.id):
        return ValidationResult.ok()

    start = time_to_minutes(target_start)
    end = time_to_minutes(target_end)
    if start >= end:
        return ValidationResult(
            valid=False,
            error="Invalid time range: start time must be before end time",
        )

    if session.session_date is not None and session.session_date < today:
        return ValidationResult(valid=False, error="Cannot modify sessions in the past")

    day_templates = _other_templates(context.sessions, session.id, target_day)
    provider_sessions = [s for s in day_templates if s.provider_id == session.provider_id]
    student_any_provider = [s for s in day_templates if s.student_id == session.student_id]
    student_same_provider = [
        s for s in student_any_provider if s.provider_id == session.provider_id
    ]

    checks = (
        check_bell_schedule(context.student, context.bell_schedules, target_day, start, end),
        check_special_activity(
            context.student, context.special_activities, target_day, start, end
        ),
        check_concurrent_limit(provider_sessions, start, end, rules.max_concurrent_sessions),
        check_consecutive_rule(
            student_same_provider, start, end, rules.max_consecutive_minutes
        ),
        check_break_rule(student_same_provider, start, end, rules.min_break_minutes),
        check_student_overlap(
            student_any_provider, session.provider_id, start, end, context.providers
        ),
    )
    conflicts = [conflict for conflict in checks if conflict is not None]

    if conflicts:
        logger.debug(
            "Session move has conflicts",
            session_id=session.id,
            day=target_day,
            conflict_types=[c.type.value for c in conflicts],
        )
    return ValidationResult.from_conflicts(conflicts)


def day_priority(current_day: Optional[int]) -> list[int]:
    """Current day first, then its neighbours, then the rest of the week."""
    if current_day not in WEEKDAYS:
        return list(WEEKDAYS)
    order = [current_day]
    if current_day - 1 in WEEKDAYS:
        order.append(current_day - 1)
    if current_day + 1 in WEEKDAYS:
        order.append(current_day + 1)
    order.extend(d for d in WEEKDAYS if d not in order)
    return order


def school_hours_for(
    school_hours: Iterable[SchoolHours], grade: str, day: int
) -> Optional[SchoolHours]:
    fallback = None
    for hours in school_hours:
        if hours.grade_level.strip() != grade:
            continue
        if hours.day_of_week == day:
            return hours
        if hours.day_of_week is None and fallback is None:
            fallback = hours
    return fallback


def _blocked_ranges(student: Student, context: ScheduleContext, day: int) -> list[_Range]:
    """
    Bell periods and class activities that block the student on ``day``.

    Uses the same school and teacher matching as check_bell_schedule and
    check_special_activity; a student without a school is never blocked.
    """
    if not student.school_id:
        return []
    blocked = [
        _Range(time_to_minutes(b.start_time), time_to_minutes(b.end_time))
        for b in context.bell_schedules
        if b.day_of_week == day
        and b.school_id == student.school_id
        and grade_matches(b.grade_level, student.grade_level)
    ]
    if student.teacher_name:
        blocked.extend(
            _Range(time_to_minutes(a.start_time), time_to_minutes(a.end_time))
            for a in context.special_activities
            if a.day_of_week == day
            and a.school_id == student.school_id
            and a.teacher_name == student.teacher_name
        )
    return blocked


def calculate_slot_conflicts(
    session: ScheduleSession,
    context: ScheduleContext,
    rules: SchedulingRules,
    current_day: Optional[int] = None,
) -> set[str]:
    """
    Grid slots where ``session`` cannot start.

    Returns keys like ``"2-09:15"``. The session's current position is
    never reported.
    """
    student = context.student
    if student is None:
        return set()

    duration = student.minutes_per_session
    current_key = (
        slot_key(session.day_of_week, session.start_time) if session.is_scheduled else None
    )
    conflicted: set[str] = set()

    for day in day_priority(current_day):
        day_templates = _other_templates(context.sessions, session.id, day)
        provider_ranges = [
            _Range.of(s) for s in day_templates if s.provider_id == session.provider_id
        ]
        student_sessions = [s for s in day_templates if s.student_id == student.id]
        student_ranges = [_Range.of(s) for s in student_sessions]
        blocked = _blocked_ranges(student, context, day)
        hours = school_hours_for(context.school_hours, student.grade_level, day)

        for start in range(rules.grid_start_minutes, rules.grid_end_minutes, rules.snap_minutes):
            key = slot_key(day, minutes_to_time(start))
            if key == current_key:
                continue
            end = start + duration

            if end > rules.grid_end_minutes:
                conflicted.add(key)
                continue
            if hours is not None and (
                start < time_to_minutes(hours.start_time) or end > time_to_minutes(hours.end_time)
            ):
                conflicted.add(key)
                continue
            if check_consecutive_rule(
                student_sessions, start, end, rules.max_consecutive_minutes
            ) or check_break_rule(student_sessions, start, end, rules.min_break_minutes):
                conflicted.add(key)
                continue

            for point in range(start, end, rules.snap_minutes):
                if any(r.start <= point < r.end for r in blocked):
                    break
                if any(r.start <= point < r.end for r in student_ranges):
                    break
                capacity = sum(1 for r in provider_ranges if r.start <= point < r.end)
                if capacity >= rules.max_concurrent_sessions:
                    break
            else:
                continue
            conflicted.add(key)

    logger.debug(
        "Slot conflicts calculated",
        session_id=session.id,
        student_id=student.id,
        conflicts=len(conflicted),
    )
    return conflicted


def find_sessions_affected_by_bell_schedule(
    sessions: Iterable[ScheduleSession],
    students: Mapping[str, Student],
    bell: BellSchedule,
) -> list[ScheduleSession]:
    """Scheduled templates that a new or changed bell period now overlaps."""
    affected = []
    for session in sessions:
        student = students.get(session.student_id) if session.student_id else None
        if student is None or not session.is_scheduled or session.is_instance:
            continue
        if session.day_of_week != bell.day_of_week:
            continue
        if not grade_matches(bell.grade_level, student.grade_level):
            continue
        other = _Range.of(session)
        if minutes_overlap(
            other.start,
            other.end,
            time_to_minutes(bell.start_time),
            time_to_minutes(bell.end_time),
        ):
            affected.append(session)
    return affected


def find_sessions_affected_by_special_activity(
    sessions: Iterable[ScheduleSession],
    students: Mapping[str, Student],
    activity: SpecialActivity,
) -> list[ScheduleSession]:
    """Scheduled templates that a new or changed special activity now overlaps."""
    affected = []
    for session in sessions:
        student = students.get(session.student_id) if session.student_id else None
        if student is None or not session.is_scheduled or session.is_instance:
            continue
        if session.day_of_week != activity.day_of_week:
            continue
        if student.teacher_name != activity.teacher_name:
            continue
        other = _Range.of(session)
        if minutes_overlap(
            other.start,
            other.end,
            time_to_minutes(activity.start_time),
            time_to_minutes(activity.end_time),
        ):
            affected.append(session)
    return affected


def detect_slot_conflicts(
    day: int,
    start_time: time,
    end_time: time,
    sessions: Iterable[ScheduleSession],
    provider_id: str,
) -> list[ScheduleSession]:
    """Provider sessions on ``day`` that overlap a candidate slot."""
    return [
        session
        for session in sessions
        if session.provider_id == provider_id
        and session.is_scheduled
        and session.day_of_week == day
        and has_time_overlap(start_time, end_time, session.start_time, session.end_time)
    ]


def validate_manual_placement(day: int, start_time: time, end_time: time) -> list[str]:
    """Basic sanity checks for a hand-placed session."""
    errors = []
    if time_to_minutes(start_time) < MANUAL_PLACEMENT_START or (
        time_to_minutes(end_time) > MANUAL_PLACEMENT_END
    ):
        errors.append("Session falls outside school hours (8am - 3pm)")
    if day not in WEEKDAYS:
        errors.append("Session must be on a weekday")
    return errors
