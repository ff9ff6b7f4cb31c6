"""
Tests for attendance normalization and summaries.
"""

from datetime import date, time

from speddy.domain.attendance import (AttendanceMark, normalize_attendance,
                                      summarize_attendance)
from speddy.domain.entities import AttendanceRecord

from .factories import PROVIDER_ID, STUDENT_ID, make_session, make_student


class TestNormalizeAttendance:
    def test_present_student_loses_absence_reason(self):
        records = normalize_attendance(
            "session-1",
            date(2025, 1, 15),
            [AttendanceMark(student_id=STUDENT_ID, present=True, absence_reason="sick")],
            PROVIDER_ID,
        )
        assert records == [
            AttendanceRecord(
                session_id="session-1",
                student_id=STUDENT_ID,
                session_date=date(2025, 1, 15),
                present=True,
                absence_reason=None,
                marked_by=PROVIDER_ID,
            )
        ]

    def test_absent_student_keeps_reason(self):
        records = normalize_attendance(
            "session-1",
            date(2025, 1, 15),
            [AttendanceMark(student_id=STUDENT_ID, present=False, absence_reason="sick")],
            PROVIDER_ID,
        )
        assert records[0].absence_reason == "sick"

    def test_blank_reason_becomes_none(self):
        records = normalize_attendance(
            "session-1",
            date(2025, 1, 15),
            [AttendanceMark(student_id=STUDENT_ID, present=False, absence_reason="")],
            PROVIDER_ID,
        )
        assert records[0].absence_reason is None


class TestSummarizeAttendance:
    """Attendance totals over dated sessions."""

    def _record(self, session, present, reason=None):
        return AttendanceRecord(
            session_id=session.id,
            student_id=session.student_id,
            session_date=session.session_date,
            present=present,
            absence_reason=reason,
        )

    def test_counts_and_ordering(self):
        sessions = [
            make_session(id="s1", session_date=date(2025, 1, 13)),
            make_session(id="s2", session_date=date(2025, 1, 14)),
            make_session(id="s3", session_date=date(2025, 1, 15)),
            make_session(id="s4", session_date=date(2025, 1, 16)),
            make_session(id="s5", session_date=date(2025, 1, 10)),
        ]
        attendance = [
            self._record(sessions[0], present=True),
            self._record(sessions[1], present=False, reason="sick"),
            self._record(sessions[2], present=False, reason="field trip"),
        ]
        summary = summarize_attendance(sessions, attendance, {STUDENT_ID: make_student()})

        assert summary.total_sessions == 5
        assert summary.present_count == 1
        assert summary.absent_count == 2
        assert summary.unmarked_count == 2
        assert [a["date"] for a in summary.absences] == [date(2025, 1, 15), date(2025, 1, 14)]
        assert [u["date"] for u in summary.unmarked_sessions] == [
            date(2025, 1, 10),
            date(2025, 1, 16),
        ]

        absence = summary.absences[0]
        assert absence["student_name"] == "Ana Lopez"
        assert absence["student_initials"] == "AL"
        assert absence["reason"] == "field trip"
        assert absence["session_time"] == "9:00 AM - 9:30 AM"

    def test_unknown_student(self):
        session = make_session(id="s1", session_date=date(2025, 1, 13), start_time=time(13, 0), end_time=time(13, 30))
        summary = summarize_attendance([session], [], {})

        unmarked = summary.unmarked_sessions[0]
        assert unmarked["student_name"] == "Unknown"
        assert unmarked["student_initials"] == "?"
        assert unmarked["session_time"] == "1:00 PM - 1:30 PM"

    def test_mark_for_another_date_does_not_count(self):
        session = make_session(id="s1", session_date=date(2025, 1, 13))
        other_day = AttendanceRecord(
            session_id="s1", student_id=STUDENT_ID, session_date=date(2025, 1, 20), present=True
        )
        summary = summarize_attendance([session], [other_day], {})
        assert summary.unmarked_count == 1
        assert summary.present_count == 0

    def test_empty(self):
        summary = summarize_attendance([], [], {})
        assert summary.total_sessions == 0
        assert summary.absences == []
