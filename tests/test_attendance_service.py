"""
Tests for the attendance service.
"""

from datetime import date

import pytest

from speddy.domain.attendance import AttendanceMark
from speddy.domain.entities import AttendanceRecord
from speddy.domain.exceptions import (AccessDeniedException, SessionNotFoundException,
                                      ValidationException)

from .factories import OTHER_PROVIDER_ID, PROVIDER_ID, STUDENT_ID, TODAY, make_session, make_student


class TestGetAttendance:
    @pytest.mark.asyncio
    async def test_unsaved_session_has_none(self, attendance_service, mock_repository, provider_user):
        assert await attendance_service.get_attendance(provider_user, "temp-1", TODAY) == []
        mock_repository.get_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_returns_records(self, attendance_service, mock_repository, provider_user):
        record = AttendanceRecord("session-1", STUDENT_ID, TODAY, True)
        mock_repository.get_session.return_value = make_session()
        mock_repository.get_attendance.return_value = [record]

        assert await attendance_service.get_attendance(provider_user, "session-1", TODAY) == [record]
        mock_repository.get_attendance.assert_awaited_once_with("session-1", TODAY)

    @pytest.mark.asyncio
    async def test_missing_session(self, attendance_service, provider_user):
        with pytest.raises(SessionNotFoundException):
            await attendance_service.get_attendance(provider_user, "session-1", TODAY)


class TestSaveAttendance:
    """Recording attendance."""

    @pytest.mark.asyncio
    async def test_saves_normalized_records(self, attendance_service, mock_repository, provider_user):
        mock_repository.get_session.return_value = make_session()
        mock_repository.upsert_attendance.side_effect = lambda records: records

        saved = await attendance_service.save_attendance(
            provider_user,
            "session-1",
            TODAY,
            [AttendanceMark(student_id=STUDENT_ID, present=True, absence_reason="sick")],
        )

        assert len(saved) == 1
        assert saved[0].absence_reason is None
        assert saved[0].marked_by == PROVIDER_ID

    @pytest.mark.asyncio
    async def test_unsaved_session_rejected(self, attendance_service, provider_user):
        with pytest.raises(ValidationException) as exc_info:
            await attendance_service.save_attendance(
                provider_user, "temp-1", TODAY, [AttendanceMark(STUDENT_ID, True)]
            )
        assert exc_info.value.details["reason"] == (
            "Session must be saved before attendance can be recorded"
        )

    @pytest.mark.asyncio
    async def test_no_marks(self, attendance_service, provider_user):
        with pytest.raises(ValidationException):
            await attendance_service.save_attendance(provider_user, "session-1", TODAY, [])

    @pytest.mark.asyncio
    async def test_foreign_session(self, attendance_service, mock_repository, provider_user):
        mock_repository.get_session.return_value = make_session(provider_id=OTHER_PROVIDER_ID)
        with pytest.raises(AccessDeniedException):
            await attendance_service.save_attendance(
                provider_user, "session-1", TODAY, [AttendanceMark(STUDENT_ID, False)]
            )
        mock_repository.upsert_attendance.assert_not_called()


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_filters_student(self, attendance_service, mock_repository, provider_user):
        mine = make_session(id="s1", session_date=date(2025, 1, 13))
        other = make_session(id="s2", student_id="student-2", session_date=date(2025, 1, 14))
        mock_repository.get_assigned_dated_sessions.return_value = [mine, other]
        mock_repository.get_attendance_for_sessions.return_value = [
            AttendanceRecord("s1", STUDENT_ID, date(2025, 1, 13), False, "sick")
        ]
        mock_repository.get_students.return_value = {STUDENT_ID: make_student()}

        summary = await attendance_service.summary(
            provider_user, date(2025, 1, 13), date(2025, 1, 17), STUDENT_ID
        )

        assert summary.total_sessions == 1
        assert summary.absent_count == 1
        mock_repository.get_attendance_for_sessions.assert_awaited_once_with(
            ["s1"], date(2025, 1, 13), date(2025, 1, 17)
        )

    @pytest.mark.asyncio
    async def test_inverted_range(self, attendance_service, provider_user):
        with pytest.raises(ValidationException):
            await attendance_service.summary(provider_user, date(2025, 1, 17), date(2025, 1, 13))
