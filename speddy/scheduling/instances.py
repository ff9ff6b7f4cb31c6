"""
Session instance materialization.

A template is a weekly session row without a date. Instances are its dated
occurrences. Instances are generated up to the end of the school year
(June 30) unless a shorter horizon is requested.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Iterable, Optional

from ..domain.entities import ScheduleSession, SessionStatus
from ..domain.exceptions import TemplateException

TEMP_ID_PREFIX = "temp-"

SCHOOL_YEAR_END_MONTH = 6
SCHOOL_YEAR_END_DAY = 30


@dataclass(frozen=True)
class InstanceGenerationOptions:
    """
    Horizon for instance generation.

    ``until_date`` takes precedence over ``weeks_ahead``; with neither set
    the school year end is used.
    """

    weeks_ahead: Optional[int] = None
    until_date: Optional[date] = None


@dataclass
class MaterializedRange:
    """Sessions for a date range plus instances that lost their template."""

    sessions: list[ScheduleSession] = field(default_factory=list)
    orphan_ids: list[str] = field(default_factory=list)


def is_temporary_id(session_id: Optional[str]) -> bool:
    return bool(session_id) and session_id.startswith(TEMP_ID_PREFIX)


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4()}"


def school_year_end(today: date) -> date:
    """June 30 of the current school year."""
    year = today.year if today.month <= SCHOOL_YEAR_END_MONTH else today.year + 1
    return date(year, SCHOOL_YEAR_END_MONTH, SCHOOL_YEAR_END_DAY)


def resolve_end_date(options: InstanceGenerationOptions, today: date) -> date:
    if options.until_date is not None:
        return options.until_date
    if options.weeks_ahead is not None:
        return today + timedelta(weeks=options.weeks_ahead)
    return school_year_end(today)


def instance_dates(day_of_week: int, today: date, end_date: date) -> list[date]:
    """
    Dates of every ``day_of_week`` (ISO, Monday = 1) from today through end_date.

    Today counts when it falls on the requested weekday.
    """
    offset = (day_of_week - today.isoweekday()) % 7
    current = today + timedelta(days=offset)
    dates = []
    while current <= end_date:
        dates.append(current)
        current += timedelta(days=7)
    return dates


def validate_template(template: ScheduleSession) -> None:
    """
    Raises:
        TemplateException: If the row cannot produce instances
    """
    if template.session_date is not None:
        raise TemplateException(template.id, "Session already has a date - not a template")
    if not template.is_scheduled:
        raise TemplateException(
            template.id,
            "Template session must have day_of_week, start_time, and end_time",
        )
    if not template.student_id or not template.provider_id:
        raise TemplateException(
            template.id, "Template session must have student_id and provider_id"
        )


def build_instances(
    template: ScheduleSession,
    dates: Iterable[date],
    existing_dates: Iterable[date] = (),
) -> list[ScheduleSession]:
    """
    Instance rows for the dates that do not have one yet.

    Ids are left empty; the database assigns them on insert.
    """
    validate_template(template)
    existing = set(existing_dates)
    return [
        replace(
            template,
            id="",
            session_date=session_date,
            template_id=template.id,
            is_template=False,
            student_absent=False,
            outside_schedule_conflict=False,
            is_completed=False,
            completed_at=None,
            completed_by=None,
            session_notes=None,
            conflict_reason=None,
        )
        for session_date in dates
        if session_date not in existing
    ]


def _matches_template(instance: ScheduleSession, template: ScheduleSession) -> bool:
    return (
        template.student_id == instance.student_id
        and template.provider_id == instance.provider_id
        and template.day_of_week == instance.day_of_week
        and template.start_time == instance.start_time
    )


def _date_range(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def materialize_range(
    instances: Iterable[ScheduleSession],
    templates: Iterable[ScheduleSession],
    start: date,
    end: date,
    today: date,
) -> MaterializedRange:
    """
    Combine stored instances and templates into the sessions of a date range.

    Completed or past instances are history and always kept. A future
    instance whose (student, provider, day, start) no longer matches any
    template is reported as an orphan and dropped. Every template then gets
    a virtual ``temp-`` instance on each matching date that has no stored
    one.
    """
    templates = [t for t in templates if t.is_scheduled]
    result = MaterializedRange()

    if not templates:
        result.sessions = list(instances)
        return result

    for instance in instances:
        is_history = instance.completed_at is not None or (
            instance.session_date is not None and instance.session_date < today
        )
        if is_history or any(_matches_template(instance, t) for t in templates):
            result.sessions.append(instance)
        else:
            result.orphan_ids.append(instance.id)

    existing = {
        (s.student_id, s.session_date, s.start_time) for s in result.sessions
    }
    for current in _date_range(start, end):
        weekday = current.isoweekday()
        for template in templates:
            if template.day_of_week != weekday:
                continue
            key = (template.student_id, current, template.start_time)
            if key in existing:
                continue
            result.sessions.append(
                replace(
                    template,
                    id=new_temporary_id(),
                    session_date=current,
                    template_id=template.id,
                    is_template=False,
                    status=template.status or SessionStatus.ACTIVE.value,
                )
            )
            existing.add(key)

    return result
