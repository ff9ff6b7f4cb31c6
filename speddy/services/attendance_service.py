"""Attendance marking and reporting."""

from datetime import date
from typing import Optional

import structlog

from ..auth import CurrentUser
from ..domain.attendance import (AttendanceMark, AttendanceSummary,
                                 normalize_attendance, summarize_attendance)
from ..domain.entities import AttendanceRecord, ScheduleSession
from ..domain.exceptions import (AccessDeniedException, SessionNotFoundException,
                                 ValidationException)
from ..metrics import track_attendance_saved
from ..repositories.schedule_repository import ScheduleRepository
from ..scheduling.filters import has_session_access
from ..scheduling.instances import is_temporary_id

logger = structlog.get_logger(__name__)


class AttendanceService:
    def __init__(self, repository: ScheduleRepository):
        self.repository = repository

    async def _session_for(self, user: CurrentUser, session_id: str) -> ScheduleSession:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)
        if not has_session_access(session, user.id):
            raise AccessDeniedException(
                "You do not have access to this session", {"session_id": session_id}
            )
        return session

    async def get_attendance(
        self, user: CurrentUser, session_id: str, session_date: date
    ) -> list[AttendanceRecord]:
        """Attendance of a session on a date; unsaved sessions have none."""
        if is_temporary_id(session_id):
            return []
        await self._session_for(user, session_id)
        return await self.repository.get_attendance(session_id, session_date)

    async def save_attendance(
        self,
        user: CurrentUser,
        session_id: str,
        session_date: date,
        marks: list[AttendanceMark],
    ) -> list[AttendanceRecord]:
        """
        Upsert attendance marks for a saved session.

        Raises:
            ValidationException: If the session is still virtual or no marks are given
        """
        if is_temporary_id(session_id):
            raise ValidationException(
                "session_id", session_id, "Session must be saved before attendance can be recorded"
            )
        if not marks:
            raise ValidationException("records", 0, "At least one attendance record is required")

        await self._session_for(user, session_id)
        records = normalize_attendance(session_id, session_date, marks, user.id)
        saved = await self.repository.upsert_attendance(records)

        for record in saved:
            track_attendance_saved(record.present)
        logger.info(
            "Attendance saved",
            user_id=user.id,
            session_id=session_id,
            session_date=session_date.isoformat(),
            count=len(saved),
        )
        return saved

    async def summary(
        self, user: CurrentUser, start: date, end: date, student_id: Optional[str] = None
    ) -> AttendanceSummary:
        """Attendance totals over the user's dated sessions in a range."""
        if start > end:
            raise ValidationException("end_date", end.isoformat(), "End date must not be before start date")

        sessions = await self.repository.get_assigned_dated_sessions(user.id, start, end)
        if student_id:
            sessions = [s for s in sessions if s.student_id == student_id]

        attendance = await self.repository.get_attendance_for_sessions(
            [s.id for s in sessions], start, end
        )
        students = await self.repository.get_students(s.student_id for s in sessions)
        result = summarize_attendance(sessions, attendance, students)

        logger.info(
            "Attendance summary built",
            user_id=user.id,
            sessions=result.total_sessions,
            absent=result.absent_count,
            unmarked=result.unmarked_count,
        )
        return result
