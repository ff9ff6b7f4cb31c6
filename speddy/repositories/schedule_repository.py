"""
PostgreSQL access for scheduling data.

All tables are owned by the hosted Supabase project; this module only reads
and writes rows through asyncpg and maps them onto domain entities.
"""

from contextlib import asynccontextmanager
from datetime import date, time
from typing import AsyncGenerator, Iterable, Optional

import asyncpg
import structlog

from ..database import get_db_connection
from ..domain.entities import (AttendanceRecord, BellSchedule, Profile,
                               ScheduleSession, SchoolHours, SessionStatus,
                               SpecialActivity, Student)
from ..domain.exceptions import DatabaseException
from ..scheduling.filters import visibility_clause

logger = structlog.get_logger(__name__)

SESSION_COLUMNS = """
    id, student_id, provider_id, day_of_week, start_time, end_time, service_type,
    session_date, delivered_by, assigned_to_sea_id, assigned_to_specialist_id,
    manually_placed, group_id, group_name, status, conflict_reason, is_template,
    template_id, completed_at, completed_by, session_notes, student_absent,
    outside_schedule_conflict, is_completed
"""

STUDENT_COLUMNS = """
    id, provider_id, initials, first_name, last_name, grade_level, teacher_name,
    school_id, minutes_per_session, sessions_per_week
"""

INSERT_SESSION_SQL = f"""
    INSERT INTO schedule_sessions (
        student_id, provider_id, day_of_week, start_time, end_time, service_type,
        session_date, delivered_by, assigned_to_sea_id, assigned_to_specialist_id,
        manually_placed, group_id, group_name, status, is_template, template_id,
        completed_at, completed_by, session_notes, student_absent,
        outside_schedule_conflict, is_completed
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
            $16, $17, $18, $19, $20, $21, $22)
    RETURNING {SESSION_COLUMNS}
"""


def _insert_params(session: ScheduleSession) -> tuple:
    return (
        session.student_id,
        session.provider_id,
        session.day_of_week,
        session.start_time,
        session.end_time,
        session.service_type,
        session.session_date,
        session.delivered_by,
        session.assigned_to_sea_id,
        session.assigned_to_specialist_id,
        session.manually_placed,
        session.group_id,
        session.group_name,
        session.status,
        session.is_template,
        session.template_id,
        session.completed_at,
        session.completed_by,
        session.session_notes,
        session.student_absent,
        session.outside_schedule_conflict,
        session.is_completed,
    )


class ScheduleRepository:
    """Reads and writes schedule sessions and the data they are checked against."""

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncGenerator[asyncpg.Connection, None]:
        try:
            async with get_db_connection() as conn:
                yield conn
        except asyncpg.PostgresError as e:
            logger.error("Database operation failed", operation=operation, error=str(e))
            raise DatabaseException(operation, str(e)) from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[ScheduleSession]:
        async with self._connection("get_session") as conn:
            row = await conn.fetchrow(
                f"SELECT {SESSION_COLUMNS} FROM schedule_sessions WHERE id = $1",
                session_id,
            )
        return ScheduleSession.from_record(row) if row else None

    async def get_sessions(self, session_ids: list[str]) -> list[ScheduleSession]:
        if not session_ids:
            return []
        async with self._connection("get_sessions") as conn:
            rows = await conn.fetch(
                f"SELECT {SESSION_COLUMNS} FROM schedule_sessions WHERE id = ANY($1::uuid[])",
                session_ids,
            )
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_provider_templates(
        self, provider_id: str, day_of_week: Optional[int] = None
    ) -> list[ScheduleSession]:
        """Scheduled templates owned by a provider, optionally for one day."""
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE provider_id = $1
              AND session_date IS NULL
              AND start_time IS NOT NULL
              AND end_time IS NOT NULL
              AND ($2::int IS NULL OR day_of_week = $2)
            ORDER BY day_of_week, start_time
        """
        async with self._connection("get_provider_templates") as conn:
            rows = await conn.fetch(query, provider_id, day_of_week)
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_student_templates(
        self, student_id: str, day_of_week: Optional[int] = None
    ) -> list[ScheduleSession]:
        """Scheduled templates of a student with any provider."""
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE student_id = $1
              AND session_date IS NULL
              AND start_time IS NOT NULL
              AND end_time IS NOT NULL
              AND ($2::int IS NULL OR day_of_week = $2)
            ORDER BY day_of_week, start_time
        """
        async with self._connection("get_student_templates") as conn:
            rows = await conn.fetch(query, student_id, day_of_week)
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_student_sessions(
        self, student_id: str, provider_id: str
    ) -> list[ScheduleSession]:
        """A student's templates with one provider, unscheduled ones included."""
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE student_id = $1
              AND provider_id = $2
              AND session_date IS NULL
            ORDER BY day_of_week NULLS LAST, start_time NULLS LAST
        """
        async with self._connection("get_student_sessions") as conn:
            rows = await conn.fetch(query, student_id, provider_id)
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_visible_instances(
        self, user_id: str, role: str, start: date, end: date
    ) -> list[ScheduleSession]:
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE {visibility_clause(role)}
              AND session_date IS NOT NULL
              AND session_date BETWEEN $2 AND $3
            ORDER BY session_date, start_time
        """
        async with self._connection("get_visible_instances") as conn:
            rows = await conn.fetch(query, user_id, start, end)
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_visible_templates(
        self, user_id: str, role: str, days: Iterable[int]
    ) -> list[ScheduleSession]:
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE {visibility_clause(role)}
              AND session_date IS NULL
              AND day_of_week = ANY($2::int[])
            ORDER BY day_of_week, start_time
        """
        async with self._connection("get_visible_templates") as conn:
            rows = await conn.fetch(query, user_id, sorted(set(days)))
        return [ScheduleSession.from_record(row) for row in rows]

    async def get_assigned_dated_sessions(
        self, user_id: str, start: date, end: date
    ) -> list[ScheduleSession]:
        """Dated sessions the user provides or is assigned to in any role."""
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE (provider_id = $1
                   OR assigned_to_specialist_id = $1
                   OR assigned_to_sea_id = $1)
              AND is_template = FALSE
              AND session_date BETWEEN $2 AND $3
        """
        async with self._connection("get_assigned_dated_sessions") as conn:
            rows = await conn.fetch(query, user_id, start, end)
        return [ScheduleSession.from_record(row) for row in rows]

    async def update_session_schedule(
        self,
        session_id: str,
        day_of_week: Optional[int],
        start_time: Optional[time],
        end_time: Optional[time],
        status: str,
        conflict_reason: Optional[str],
    ) -> Optional[ScheduleSession]:
        query = f"""
            UPDATE schedule_sessions
            SET day_of_week = $2, start_time = $3, end_time = $4,
                status = $5, conflict_reason = $6, updated_at = NOW()
            WHERE id = $1
            RETURNING {SESSION_COLUMNS}
        """
        async with self._connection("update_session_schedule") as conn:
            row = await conn.fetchrow(
                query, session_id, day_of_week, start_time, end_time, status, conflict_reason
            )
        return ScheduleSession.from_record(row) if row else None

    async def unschedule_day(self, provider_id: str, day_of_week: int) -> int:
        query = """
            UPDATE schedule_sessions
            SET day_of_week = NULL, start_time = NULL, end_time = NULL,
                status = $3, conflict_reason = NULL, updated_at = NOW()
            WHERE provider_id = $1 AND day_of_week = $2
            RETURNING id
        """
        async with self._connection("unschedule_day") as conn:
            rows = await conn.fetch(query, provider_id, day_of_week, SessionStatus.ACTIVE.value)
        return len(rows)

    async def mark_sessions(
        self, session_ids: list[str], status: str, conflict_reason: Optional[str]
    ) -> int:
        if not session_ids:
            return 0
        query = """
            UPDATE schedule_sessions
            SET status = $2, conflict_reason = $3, updated_at = NOW()
            WHERE id = ANY($1::uuid[])
            RETURNING id
        """
        async with self._connection("mark_sessions") as conn:
            rows = await conn.fetch(query, session_ids, status, conflict_reason)
        return len(rows)

    async def insert_session(self, session: ScheduleSession) -> ScheduleSession:
        async with self._connection("insert_session") as conn:
            row = await conn.fetchrow(INSERT_SESSION_SQL, *_insert_params(session))
        return ScheduleSession.from_record(row)

    async def insert_sessions(self, sessions: list[ScheduleSession]) -> list[ScheduleSession]:
        if not sessions:
            return []
        created = []
        async with self._connection("insert_sessions") as conn:
            async with conn.transaction():
                for session in sessions:
                    row = await conn.fetchrow(INSERT_SESSION_SQL, *_insert_params(session))
                    created.append(ScheduleSession.from_record(row))
        return created

    async def update_instance_completion(
        self, session: ScheduleSession
    ) -> Optional[ScheduleSession]:
        """Update completion fields of a dated instance; templates are never touched."""
        query = f"""
            UPDATE schedule_sessions
            SET completed_at = $2, completed_by = $3, session_notes = $4, updated_at = NOW()
            WHERE id = $1 AND session_date IS NOT NULL
            RETURNING {SESSION_COLUMNS}
        """
        async with self._connection("update_instance_completion") as conn:
            row = await conn.fetchrow(
                query,
                session.id,
                session.completed_at,
                session.completed_by,
                session.session_notes,
            )
        return ScheduleSession.from_record(row) if row else None

    async def delete_sessions(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        async with self._connection("delete_sessions") as conn:
            result = await conn.execute(
                "DELETE FROM schedule_sessions WHERE id = ANY($1::uuid[])", session_ids
            )
        return int(result.split()[-1])

    async def get_existing_instance_dates(
        self, template: ScheduleSession, dates: list[date]
    ) -> set[date]:
        """Dates that already hold an instance of ``template``."""
        if not dates:
            return set()
        query = """
            SELECT session_date FROM schedule_sessions
            WHERE student_id = $1
              AND provider_id = $2
              AND service_type IS NOT DISTINCT FROM $3
              AND day_of_week = $4
              AND start_time = $5
              AND end_time = $6
              AND session_date = ANY($7::date[])
        """
        async with self._connection("get_existing_instance_dates") as conn:
            rows = await conn.fetch(
                query,
                template.student_id,
                template.provider_id,
                template.service_type,
                template.day_of_week,
                template.start_time,
                template.end_time,
                dates,
            )
        return {row["session_date"] for row in rows}

    async def list_templates(self, offset: int, limit: int) -> list[ScheduleSession]:
        """One page of scheduled templates across all providers."""
        query = f"""
            SELECT {SESSION_COLUMNS} FROM schedule_sessions
            WHERE session_date IS NULL
              AND day_of_week IS NOT NULL
              AND start_time IS NOT NULL
              AND end_time IS NOT NULL
            ORDER BY id
            OFFSET $1 LIMIT $2
        """
        async with self._connection("list_templates") as conn:
            rows = await conn.fetch(query, offset, limit)
        return [ScheduleSession.from_record(row) for row in rows]

    async def set_group(
        self, session_ids: list[str], group_id: str, group_name: str
    ) -> list[ScheduleSession]:
        """Group templates and propagate the group to their existing instances."""
        template_query = f"""
            UPDATE schedule_sessions
            SET group_id = $2, group_name = $3, updated_at = NOW()
            WHERE id = ANY($1::uuid[])
            RETURNING {SESSION_COLUMNS}
        """
        instance_query = """
            UPDATE schedule_sessions
            SET group_id = $4, group_name = $5, updated_at = NOW()
            WHERE student_id = $1
              AND day_of_week = $2
              AND start_time = $3
              AND session_date IS NOT NULL
        """
        async with self._connection("set_group") as conn:
            async with conn.transaction():
                rows = await conn.fetch(template_query, session_ids, group_id, group_name)
                updated = [ScheduleSession.from_record(row) for row in rows]
                for template in updated:
                    if template.session_date is not None:
                        continue
                    await conn.execute(
                        instance_query,
                        template.student_id,
                        template.day_of_week,
                        template.start_time,
                        group_id,
                        group_name,
                    )
        return updated

    async def clear_group(self, group_id: str, user_id: str) -> int:
        query = """
            UPDATE schedule_sessions
            SET group_id = NULL, group_name = NULL, updated_at = NOW()
            WHERE group_id = $1
              AND (provider_id = $2
                   OR assigned_to_specialist_id = $2
                   OR assigned_to_sea_id = $2)
            RETURNING id
        """
        async with self._connection("clear_group") as conn:
            rows = await conn.fetch(query, group_id, user_id)
        return len(rows)

    # ------------------------------------------------------------------
    # Students, profiles and school calendar
    # ------------------------------------------------------------------

    async def get_student(self, student_id: str) -> Optional[Student]:
        async with self._connection("get_student") as conn:
            row = await conn.fetchrow(
                f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = $1", student_id
            )
        return Student.from_record(row) if row else None

    async def get_students(self, student_ids: Iterable[str]) -> dict[str, Student]:
        ids = sorted({sid for sid in student_ids if sid})
        if not ids:
            return {}
        async with self._connection("get_students") as conn:
            rows = await conn.fetch(
                f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = ANY($1::uuid[])", ids
            )
        students = [Student.from_record(row) for row in rows]
        return {student.id: student for student in students}

    async def update_student_requirements(
        self,
        student_id: str,
        minutes_per_session: Optional[int],
        sessions_per_week: Optional[int],
    ) -> Optional[Student]:
        """Set the requirements that are given; None leaves a column unchanged."""
        query = f"""
            UPDATE students
            SET minutes_per_session = COALESCE($2, minutes_per_session),
                sessions_per_week = COALESCE($3, sessions_per_week)
            WHERE id = $1
            RETURNING {STUDENT_COLUMNS}
        """
        async with self._connection("update_student_requirements") as conn:
            row = await conn.fetchrow(query, student_id, minutes_per_session, sessions_per_week)
        return Student.from_record(row) if row else None

    async def get_profiles(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        ids = sorted({uid for uid in user_ids if uid})
        if not ids:
            return {}
        async with self._connection("get_profiles") as conn:
            rows = await conn.fetch(
                "SELECT id, full_name, role FROM profiles WHERE id = ANY($1::uuid[])", ids
            )
        profiles = [Profile.from_record(row) for row in rows]
        return {profile.id: profile for profile in profiles}

    async def get_bell_schedules(
        self, provider_id: str, school_id: Optional[str] = None
    ) -> list[BellSchedule]:
        query = """
            SELECT id, provider_id, school_id, grade_level, day_of_week,
                   start_time, end_time, period_name
            FROM bell_schedules
            WHERE provider_id = $1 AND ($2::text IS NULL OR school_id::text = $2)
        """
        async with self._connection("get_bell_schedules") as conn:
            rows = await conn.fetch(query, provider_id, school_id)
        return [BellSchedule.from_record(row) for row in rows]

    async def get_special_activities(
        self, provider_id: str, school_id: Optional[str] = None
    ) -> list[SpecialActivity]:
        query = """
            SELECT id, provider_id, school_id, teacher_name, activity_name,
                   day_of_week, start_time, end_time
            FROM special_activities
            WHERE provider_id = $1 AND ($2::text IS NULL OR school_id::text = $2)
        """
        async with self._connection("get_special_activities") as conn:
            rows = await conn.fetch(query, provider_id, school_id)
        return [SpecialActivity.from_record(row) for row in rows]

    async def get_school_hours(
        self, provider_id: str, school_id: Optional[str] = None
    ) -> list[SchoolHours]:
        query = """
            SELECT grade_level, day_of_week, start_time, end_time
            FROM school_hours
            WHERE provider_id = $1 AND ($2::text IS NULL OR school_id::text = $2)
        """
        async with self._connection("get_school_hours") as conn:
            rows = await conn.fetch(query, provider_id, school_id)
        return [SchoolHours.from_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    async def get_attendance(self, session_id: str, session_date: date) -> list[AttendanceRecord]:
        query = """
            SELECT id, session_id, student_id, session_date, present, absence_reason, marked_by
            FROM attendance
            WHERE session_id = $1 AND session_date = $2
        """
        async with self._connection("get_attendance") as conn:
            rows = await conn.fetch(query, session_id, session_date)
        return [AttendanceRecord.from_record(row) for row in rows]

    async def get_attendance_for_sessions(
        self, session_ids: list[str], start: date, end: date
    ) -> list[AttendanceRecord]:
        if not session_ids:
            return []
        query = """
            SELECT id, session_id, student_id, session_date, present, absence_reason, marked_by
            FROM attendance
            WHERE session_id = ANY($1::uuid[]) AND session_date BETWEEN $2 AND $3
        """
        async with self._connection("get_attendance_for_sessions") as conn:
            rows = await conn.fetch(query, session_ids, start, end)
        return [AttendanceRecord.from_record(row) for row in rows]

    async def upsert_attendance(self, records: list[AttendanceRecord]) -> list[AttendanceRecord]:
        query = """
            INSERT INTO attendance
                (session_id, student_id, session_date, present, absence_reason, marked_by)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (session_id, student_id, session_date)
            DO UPDATE SET present = EXCLUDED.present,
                          absence_reason = EXCLUDED.absence_reason,
                          marked_by = EXCLUDED.marked_by,
                          updated_at = NOW()
            RETURNING id, session_id, student_id, session_date, present, absence_reason, marked_by
        """
        saved = []
        async with self._connection("upsert_attendance") as conn:
            async with conn.transaction():
                for record in records:
                    row = await conn.fetchrow(
                        query,
                        record.session_id,
                        record.student_id,
                        record.session_date,
                        record.present,
                        record.absence_reason,
                        record.marked_by,
                    )
                    saved.append(AttendanceRecord.from_record(row))
        return saved
