"""Attendance normalization and summaries."""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional

from ..scheduling.timeutils import format_time_12hr
from .entities import AttendanceRecord, ScheduleSession, Student


@dataclass(frozen=True)
class AttendanceMark:
    """One student's mark as submitted by a provider."""

    student_id: str
    present: bool
    absence_reason: Optional[str] = None


@dataclass
class AttendanceSummary:
    total_sessions: int = 0
    present_count: int = 0
    absent_count: int = 0
    unmarked_count: int = 0
    absences: list[dict] = field(default_factory=list)
    unmarked_sessions: list[dict] = field(default_factory=list)


def normalize_attendance(
    session_id: str,
    session_date: date,
    marks: Iterable[AttendanceMark],
    marked_by: str,
) -> list[AttendanceRecord]:
    """Rows to upsert; a present student never keeps an absence reason."""
    return [
        AttendanceRecord(
            session_id=session_id,
            student_id=mark.student_id,
            session_date=session_date,
            present=mark.present,
            absence_reason=None if mark.present else (mark.absence_reason or None),
            marked_by=marked_by,
        )
        for mark in marks
    ]


def _session_time(session: ScheduleSession) -> str:
    return f"{format_time_12hr(session.start_time)} - {format_time_12hr(session.end_time)}"


def summarize_attendance(
    sessions: Iterable[ScheduleSession],
    attendance: Iterable[AttendanceRecord],
    students: Mapping[str, Student],
) -> AttendanceSummary:
    """
    Count present, absent and unmarked student-sessions.

    Absences are listed newest first, unmarked sessions oldest first.
    """
    sessions = list(sessions)
    marks = {(a.session_id, a.session_date, a.student_id): a for a in attendance}
    summary = AttendanceSummary(total_sessions=len(sessions))

    for session in sessions:
        if not session.is_instance or not session.student_id:
            continue
        student = students.get(session.student_id)
        name = student.display_name if student else "Unknown"
        initials = student.name_initials if student else "?"
        record = marks.get((session.id, session.session_date, session.student_id))

        if record is None:
            summary.unmarked_count += 1
            summary.unmarked_sessions.append(
                {
                    "session_id": session.id,
                    "student_id": session.student_id,
                    "student_name": name,
                    "student_initials": initials,
                    "date": session.session_date,
                    "session_time": _session_time(session),
                }
            )
        elif record.present:
            summary.present_count += 1
        else:
            summary.absent_count += 1
            summary.absences.append(
                {
                    "student_name": name,
                    "student_initials": initials,
                    "date": session.session_date,
                    "reason": record.absence_reason,
                    "session_time": _session_time(session),
                }
            )

    summary.absences.sort(key=lambda item: item["date"], reverse=True)
    summary.unmarked_sessions.sort(key=lambda item: item["date"])
    return summary
