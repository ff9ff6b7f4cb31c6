"""
Session scheduling service.

Orchestrates weekly-grid operations: it loads the data a check needs from
the repository, runs the pure scheduling functions and persists the result.
"""

import asyncio
import uuid
from datetime import date, time, timedelta
from typing import Callable, Iterable, Optional

import structlog

from ..auth import CurrentUser
from ..domain.entities import (AutoScheduleResult, BellSchedule, DeliveredBy,
                               PlacementResult, PlacementStatus,
                               RequirementSyncResult, ScheduleSession,
                               SessionFilter, SessionStatus, SpecialActivity,
                               Student, TimeSlot, ValidationResult)
from ..domain.exceptions import (AccessDeniedException, PastSessionException,
                                 ScheduleConflictException, SessionNotFoundException,
                                 StudentNotFoundException, ValidationException)
from ..metrics import (track_conflicts, track_session_move, track_sessions_flagged,
                       track_sessions_placed)
from ..repositories.schedule_repository import ScheduleRepository
from ..scheduling.conflicts import (CONFLICT_REASON_SEPARATOR, WEEKDAYS,
                                    ScheduleContext, calculate_slot_conflicts,
                                    detect_slot_conflicts,
                                    find_sessions_affected_by_bell_schedule,
                                    find_sessions_affected_by_special_activity,
                                    validate_manual_placement, validate_session_move)
from ..scheduling.filters import (delivered_by_for_role, filter_sessions,
                                  has_session_access, normalize_role, visible_to)
from ..scheduling.instances import is_temporary_id, materialize_range
from ..scheduling.placement import (find_auto_slots, find_manual_slots,
                                    requirement_conflicts, split_excess)
from ..scheduling.rules import SchedulingRules
from ..scheduling.timeutils import add_minutes, format_hhmm

logger = structlog.get_logger(__name__)


class SessionService:
    """Weekly schedule operations for the current user."""

    def __init__(
        self,
        repository: ScheduleRepository,
        rules: Optional[SchedulingRules] = None,
        today: Callable[[], date] = date.today,
    ):
        """
        Args:
            repository: Data access for sessions and school calendars
            rules: Scheduling limits, defaults to the configured ones
            today: Clock used for past-session checks
        """
        self.repository = repository
        self.rules = rules or SchedulingRules.from_settings()
        self.today = today

    async def get_accessible_session(self, user: CurrentUser, session_id: str) -> ScheduleSession:
        """
        Raises:
            SessionNotFoundException: If the session does not exist
            AccessDeniedException: If the user is not provider or assignee
        """
        if is_temporary_id(session_id):
            raise SessionNotFoundException(session_id)
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)
        if not has_session_access(session, user.id):
            logger.warning("Session access denied", user_id=user.id, session_id=session_id)
            raise AccessDeniedException(
                "You do not have access to this session", {"session_id": session_id}
            )
        return session

    async def build_context(
        self, session: ScheduleSession, day: Optional[int] = None
    ) -> ScheduleContext:
        """Load everything conflict checks need for the session's student."""
        student = (
            await self.repository.get_student(session.student_id) if session.student_id else None
        )
        return await self.load_context(student, session.provider_id, day)

    async def load_context(
        self, student: Optional[Student], provider_id: str, day: Optional[int] = None
    ) -> ScheduleContext:
        """Provider and student templates plus the student's school calendar."""
        school_id = student.school_id if student else None

        provider_templates, student_templates, bells, activities, hours = await asyncio.gather(
            self.repository.get_provider_templates(provider_id, day),
            self._student_templates(student, day),
            self.repository.get_bell_schedules(provider_id, school_id),
            self.repository.get_special_activities(provider_id, school_id),
            self.repository.get_school_hours(provider_id, school_id),
        )

        sessions = {s.id: s for s in provider_templates}
        sessions.update({s.id: s for s in student_templates})
        other_providers = {
            s.provider_id
            for s in student_templates
            if s.provider_id and s.provider_id != provider_id
        }
        providers = await self.repository.get_profiles(other_providers)

        return ScheduleContext(
            student=student,
            sessions=list(sessions.values()),
            bell_schedules=bells,
            special_activities=activities,
            school_hours=hours,
            providers=providers,
        )

    async def _student_templates(self, student, day: Optional[int]) -> list[ScheduleSession]:
        if student is None:
            return []
        return await self.repository.get_student_templates(student.id, day)

    @staticmethod
    def _check_target(day: int, start: time, end: time) -> None:
        if day not in WEEKDAYS:
            raise ValidationException("day_of_week", day, "Day must be between 1 (Mon) and 5 (Fri)")
        if start >= end:
            raise ValidationException(
                "start_time", format_hhmm(start), "Start time must be before end time"
            )

    async def validate_move(
        self, user: CurrentUser, session_id: str, day: int, start: time, end: time
    ) -> ValidationResult:
        """Check a proposed new position without saving it."""
        if is_temporary_id(session_id):
            return ValidationResult.ok()

        session = await self.get_accessible_session(user, session_id)
        context = await self.build_context(session, day)
        result = validate_session_move(session, day, start, end, context, self.rules, self.today())
        track_conflicts([c.type.value for c in result.conflicts])

        logger.info(
            "Session move validated",
            user_id=user.id,
            session_id=session_id,
            day=day,
            valid=result.valid,
            conflicts=len(result.conflicts),
        )
        return result

    async def update_session_time(
        self,
        user: CurrentUser,
        session_id: str,
        day: int,
        start: time,
        end: time,
        force: bool = False,
    ) -> ScheduleSession:
        """
        Move a session to a new day and time.

        A conflicting move is only saved when ``force`` is set; the session
        is then marked ``needs_attention`` with the conflicts as reason.

        Raises:
            ScheduleConflictException: If the move conflicts and was not forced
            PastSessionException: If the session is a dated instance in the past
        """
        self._check_target(day, start, end)
        session = await self.get_accessible_session(user, session_id)
        if session.session_date is not None and session.session_date < self.today():
            track_session_move("rejected")
            raise PastSessionException(session_id, session.session_date)

        context = await self.build_context(session, day)
        result = validate_session_move(session, day, start, end, context, self.rules, self.today())

        if result.valid:
            status, reason, outcome = SessionStatus.ACTIVE.value, None, "applied"
        elif force:
            status = SessionStatus.NEEDS_ATTENTION.value
            reason = (
                CONFLICT_REASON_SEPARATOR.join(c.description for c in result.conflicts)
                or result.error
            )
            outcome = "forced"
        else:
            track_session_move("rejected")
            track_conflicts([c.type.value for c in result.conflicts])
            logger.info(
                "Session move rejected",
                user_id=user.id,
                session_id=session_id,
                conflicts=len(result.conflicts),
            )
            raise ScheduleConflictException(
                result.error or "Session move has conflicts",
                [c.to_dict() for c in result.conflicts],
            )

        updated = await self.repository.update_session_schedule(
            session_id, day, start, end, status, reason
        )
        if updated is None:
            raise SessionNotFoundException(session_id)

        track_session_move(outcome)
        logger.info(
            "Session moved",
            user_id=user.id,
            session_id=session_id,
            day=day,
            start=format_hhmm(start),
            end=format_hhmm(end),
            outcome=outcome,
        )
        return updated

    async def unschedule_session(self, user: CurrentUser, session_id: str) -> ScheduleSession:
        """Move a session back to the unscheduled panel."""
        await self.get_accessible_session(user, session_id)
        updated = await self.repository.update_session_schedule(
            session_id, None, None, None, SessionStatus.ACTIVE.value, None
        )
        if updated is None:
            raise SessionNotFoundException(session_id)
        logger.info("Session unscheduled", user_id=user.id, session_id=session_id)
        return updated

    async def unschedule_day(self, user: CurrentUser, day: int) -> int:
        """Unschedule every session the user provides on ``day``."""
        if day not in WEEKDAYS:
            raise ValidationException("day_of_week", day, "Day must be between 1 (Mon) and 5 (Fri)")
        count = await self.repository.unschedule_day(user.id, day)
        logger.info("Day unscheduled", user_id=user.id, day=day, count=count)
        return count

    async def slot_conflicts(
        self, user: CurrentUser, session_id: str, current_day: Optional[int] = None
    ) -> set[str]:
        """Grid slots where the session cannot be dropped."""
        session = await self.get_accessible_session(user, session_id)
        context = await self.build_context(session)
        return calculate_slot_conflicts(session, context, self.rules, current_day)

    async def sessions_for_range(
        self,
        user: CurrentUser,
        start: date,
        end: date,
        session_filter: SessionFilter = SessionFilter.ALL,
    ) -> list[ScheduleSession]:
        """
        Sessions shown on the grid between ``start`` and ``end``.

        Stored instances are combined with virtual ones built from templates.
        Future instances whose template disappeared are deleted. The range
        may span at most ``rules.max_range_days`` days.
        """
        if start > end:
            raise ValidationException("end_date", end.isoformat(), "End date must not be before start date")
        max_days = self.rules.max_range_days
        if (end - start).days + 1 > max_days:
            raise ValidationException(
                "end_date", end.isoformat(), f"Date range must not exceed {max_days} days"
            )

        days = {d.isoweekday() for d in _dates(start, end)}
        instances, templates = await asyncio.gather(
            self.repository.get_visible_instances(user.id, user.role, start, end),
            self.repository.get_visible_templates(user.id, user.role, days),
        )

        materialized = materialize_range(instances, templates, start, end, self.today())
        if materialized.orphan_ids:
            deleted = await self.repository.delete_sessions(materialized.orphan_ids)
            logger.info("Orphaned instances deleted", user_id=user.id, count=deleted)

        visible = [s for s in materialized.sessions if visible_to(s, user.id, user.role)]
        sessions = filter_sessions(visible, session_filter, user.id)
        logger.debug(
            "Sessions loaded",
            user_id=user.id,
            start=start.isoformat(),
            end=end.isoformat(),
            filter=session_filter.value,
            count=len(sessions),
        )
        return sessions

    async def save_instance(self, user: CurrentUser, session: ScheduleSession) -> ScheduleSession:
        """
        Persist a dated instance.

        A virtual ``temp-`` instance is inserted as a new row. An existing
        instance only has its completion fields updated.
        """
        if not session.is_instance:
            raise ValidationException("session_date", None, "Only dated instances can be saved")
        if not has_session_access(session, user.id):
            raise AccessDeniedException(
                "You do not have access to this session", {"session_id": session.id}
            )

        if is_temporary_id(session.id):
            created = await self.repository.insert_session(session)
            logger.info(
                "Instance created",
                user_id=user.id,
                session_id=created.id,
                template_id=session.template_id,
                session_date=session.session_date.isoformat(),
            )
            return created

        existing = await self.get_accessible_session(user, session.id)
        if not existing.is_instance:
            raise ValidationException("session_id", session.id, "Templates cannot be saved as instances")
        updated = await self.repository.update_instance_completion(session)
        if updated is None:
            raise SessionNotFoundException(session.id)
        logger.info("Instance updated", user_id=user.id, session_id=session.id)
        return updated

    async def group_sessions(
        self,
        user: CurrentUser,
        session_ids: list[str],
        group_name: str,
        group_id: Optional[str] = None,
    ) -> list[ScheduleSession]:
        """
        Put sessions into a named group.

        Every session must be delivered by the user's role; the group is
        copied onto existing instances of grouped templates.
        """
        ids = list(dict.fromkeys(session_ids))
        if len(ids) < 2:
            raise ValidationException("session_ids", len(ids), "At least 2 sessions are required to create a group")
        if not group_name or not group_name.strip():
            raise ValidationException("group_name", group_name, "Group name is required")

        delivered_by = delivered_by_for_role(user.role)
        if delivered_by is None:
            raise AccessDeniedException(f"Role '{user.role}' cannot group sessions")

        sessions = await self.repository.get_sessions(ids)
        found = {s.id for s in sessions}
        missing = [sid for sid in ids if sid not in found]
        if missing:
            raise SessionNotFoundException(missing[0])

        for session in sessions:
            if not has_session_access(session, user.id):
                raise AccessDeniedException(
                    "You do not have access to this session", {"session_id": session.id}
                )
            if session.delivered_by != delivered_by.value:
                raise AccessDeniedException(
                    "You can only group sessions that you are assigned to deliver",
                    {"session_id": session.id, "delivered_by": session.delivered_by},
                )

        group_id = group_id or str(uuid.uuid4())
        updated = await self.repository.set_group(ids, group_id, group_name.strip())
        logger.info(
            "Sessions grouped",
            user_id=user.id,
            group_id=group_id,
            count=len(updated),
        )
        return updated

    async def ungroup_sessions(self, user: CurrentUser, group_id: str) -> int:
        count = await self.repository.clear_group(group_id, user.id)
        if count == 0:
            raise ValidationException("group_id", group_id, "No sessions found in this group")
        logger.info("Sessions ungrouped", user_id=user.id, group_id=group_id, count=count)
        return count

    async def _flag(
        self, sessions: Iterable[ScheduleSession], reason: str, source: str
    ) -> list[ScheduleSession]:
        affected = list(sessions)
        await self.repository.mark_sessions(
            [s.id for s in affected], SessionStatus.CONFLICT.value, reason
        )
        track_sessions_flagged(source, len(affected))
        return affected

    async def flag_bell_schedule_conflicts(
        self, user: CurrentUser, bell: BellSchedule
    ) -> list[ScheduleSession]:
        """Mark the user's templates that a bell period now overlaps."""
        templates = await self.repository.get_provider_templates(user.id, bell.day_of_week)
        students = await self.repository.get_students(s.student_id for s in templates)
        affected = find_sessions_affected_by_bell_schedule(templates, students, bell)

        reason = (
            f"Conflicts with bell schedule period \"{bell.period_name}\" "
            f"({format_hhmm(bell.start_time)} - {format_hhmm(bell.end_time)})"
        )
        flagged = await self._flag(affected, reason, "bell_schedule")
        logger.info(
            "Bell schedule conflicts flagged",
            user_id=user.id,
            bell_schedule_id=bell.id,
            count=len(flagged),
        )
        return flagged

    async def flag_special_activity_conflicts(
        self, user: CurrentUser, activity: SpecialActivity
    ) -> list[ScheduleSession]:
        """Mark the user's templates that a special activity now overlaps."""
        templates = await self.repository.get_provider_templates(user.id, activity.day_of_week)
        students = await self.repository.get_students(s.student_id for s in templates)
        affected = find_sessions_affected_by_special_activity(templates, students, activity)

        reason = (
            f"Conflicts with special activity \"{activity.activity_name}\" with "
            f"{activity.teacher_name} "
            f"({format_hhmm(activity.start_time)} - {format_hhmm(activity.end_time)})"
        )
        flagged = await self._flag(affected, reason, "special_activity")
        logger.info(
            "Special activity conflicts flagged",
            user_id=user.id,
            special_activity_id=activity.id,
            count=len(flagged),
        )
        return flagged
    async def get_owned_student(self, user: CurrentUser, student_id: str) -> Student:
        """
        Raises:
            StudentNotFoundException: If the student does not exist
            AccessDeniedException: If the student is on another provider's caseload
        """
        student = await self.repository.get_student(student_id)
        if student is None:
            raise StudentNotFoundException(student_id)
        if student.provider_id and student.provider_id != user.id:
            logger.warning("Student access denied", user_id=user.id, student_id=student_id)
            raise AccessDeniedException(
                "You do not have access to this student", {"student_id": student_id}
            )
        return student

    async def auto_schedule_student(
        self, user: CurrentUser, student_id: str
    ) -> AutoScheduleResult:
        """
        Place the student's missing weekly sessions in free slots.

        The student needs ``sessions_per_week`` scheduled templates with the
        user. Unscheduled templates are placed first, new templates are
        created for the rest. At most one session per day is placed.
        """
        student = await self.get_owned_student(user, student_id)
        templates = await self.repository.get_student_sessions(student.id, user.id)
        scheduled = [t for t in templates if t.is_scheduled]
        unscheduled = [t for t in templates if not t.is_scheduled]

        needed = max(0, student.sessions_per_week - len(scheduled))
        result = AutoScheduleResult(student_id=student.id, sessions_needed=needed)
        if needed == 0:
            logger.info("Student already fully scheduled", user_id=user.id, student_id=student.id)
            return result

        context = await self.load_context(student, user.id)
        slots = find_auto_slots(student, user.id, context, self.rules, needed)
        if len(slots) < needed:
            result.errors.append(
                f"Could only find {len(slots)} of {needed} required slots for "
                f"{student.initials or student.name_initials}"
            )

        for index, slot in enumerate(slots):
            if index < len(unscheduled):
                placed = await self.repository.update_session_schedule(
                    unscheduled[index].id,
                    slot.day_of_week,
                    slot.start_time,
                    slot.end_time,
                    SessionStatus.ACTIVE.value,
                    None,
                )
            else:
                placed = await self.repository.insert_session(
                    _new_template(user, student.id, slot)
                )
            if placed is not None:
                result.sessions.append(placed)

        track_sessions_placed("auto", len(result.sessions))
        logger.info(
            "Student auto-scheduled",
            user_id=user.id,
            student_id=student.id,
            needed=needed,
            placed=len(result.sessions),
        )
        return result

    async def place_manually(
        self,
        user: CurrentUser,
        student_ids: list[str],
        ignore_conflicts: bool = True,
        prefer_earliest: bool = False,
    ) -> list[PlacementResult]:
        """
        Give each student a new template in the next half-hour slot.

        Slots are sized for the first student's session length. Sessions
        are saved as ``manually_placed``; with ``ignore_conflicts`` a slot
        that overlaps the user's sessions is still used and the overlapping
        session ids are reported.
        """
        ids = list(dict.fromkeys(student_ids))
        if not ids:
            raise ValidationException("student_ids", 0, "At least one student is required")

        students = await self.repository.get_students(ids)
        for student in students.values():
            if student.provider_id and student.provider_id != user.id:
                raise AccessDeniedException(
                    "You do not have access to this student", {"student_id": student.id}
                )

        provider_sessions = list(await self.repository.get_provider_templates(user.id))
        slots: list[TimeSlot] = []
        if students:
            duration = next(students[sid] for sid in ids if sid in students).minutes_per_session
            slots = find_manual_slots(
                provider_sessions, user.id, duration, len(ids), ignore_conflicts, prefer_earliest
            )
        if not slots:
            return [PlacementResult.failed(sid, "No available time slots found") for sid in ids]

        results = []
        slot_index = 0
        for student_id in ids:
            if student_id not in students:
                results.append(PlacementResult.failed(student_id, "Student not found"))
                continue
            if slot_index >= len(slots):
                results.append(
                    PlacementResult.failed(student_id, "Insufficient time slots available")
                )
                continue

            slot = slots[slot_index]
            errors = validate_manual_placement(slot.day_of_week, slot.start_time, slot.end_time)
            if errors and not ignore_conflicts:
                results.append(PlacementResult.failed(student_id, ", ".join(errors)))
                continue

            overlapping = detect_slot_conflicts(
                slot.day_of_week, slot.start_time, slot.end_time, provider_sessions, user.id
            )
            created = await self.repository.insert_session(
                _new_template(user, student_id, slot, manually_placed=True)
            )
            provider_sessions.append(created)
            results.append(
                PlacementResult(
                    student_id=student_id,
                    status=PlacementStatus.SUCCESS,
                    session=created,
                    slot=slot,
                    conflicts=[s.id for s in overlapping],
                )
            )
            slot_index += 1

        placed = sum(1 for r in results if r.status == PlacementStatus.SUCCESS)
        track_sessions_placed("manual", placed)
        logger.info(
            "Sessions placed manually",
            user_id=user.id,
            requested=len(ids),
            placed=placed,
        )
        return results

    async def sync_student_requirements(
        self,
        user: CurrentUser,
        student_id: str,
        minutes_per_session: Optional[int] = None,
        sessions_per_week: Optional[int] = None,
    ) -> RequirementSyncResult:
        """
        Update a student's requirements and bring their templates in line.

        A new session length moves every scheduled template's end time and
        resets it to ``active``. A new weekly count deletes the latest
        templates or adds unscheduled ones. Templates that then run past the
        grid or overlap another of the student's sessions are marked
        ``needs_attention``.
        """
        if minutes_per_session is None and sessions_per_week is None:
            raise ValidationException(
                "requirements", None, "minutes_per_session or sessions_per_week is required"
            )
        student = await self.get_owned_student(user, student_id)
        if await self.repository.update_student_requirements(
            student.id, minutes_per_session, sessions_per_week
        ) is None:
            raise StudentNotFoundException(student_id)

        result = RequirementSyncResult(student_id=student.id)
        templates = await self.repository.get_student_sessions(student.id, user.id)

        if minutes_per_session is not None and minutes_per_session != student.minutes_per_session:
            resized = []
            for template in templates:
                if not template.is_scheduled:
                    resized.append(template)
                    continue
                updated = await self.repository.update_session_schedule(
                    template.id,
                    template.day_of_week,
                    template.start_time,
                    add_minutes(template.start_time, minutes_per_session),
                    SessionStatus.ACTIVE.value,
                    None,
                )
                if updated is not None:
                    resized.append(updated)
                    result.resized += 1
            templates = resized

        removed_ids: list[str] = []
        if sessions_per_week is not None and sessions_per_week != student.sessions_per_week:
            templates, excess = split_excess(templates, sessions_per_week)
            removed_ids = [t.id for t in excess]
            if removed_ids:
                result.removed = await self.repository.delete_sessions(removed_ids)
            missing = sessions_per_week - len(templates)
            if missing > 0:
                created = await self.repository.insert_sessions(
                    [_new_template(user, student.id) for _ in range(missing)]
                )
                result.added = len(created)
                templates = templates + created

        current = {t.id: t for t in await self.repository.get_student_templates(student.id)}
        current.update({t.id: t for t in templates})
        student_sessions = [s for s in current.values() if s.id not in removed_ids]
        result.conflicts = requirement_conflicts(
            templates, student_sessions, self.rules.grid_end_minutes
        )

        by_reason: dict[str, list[str]] = {}
        for session_id, reason in result.conflicts.items():
            by_reason.setdefault(reason, []).append(session_id)
        for reason, ids in by_reason.items():
            await self.repository.mark_sessions(ids, SessionStatus.NEEDS_ATTENTION.value, reason)
        track_sessions_flagged("requirements", len(result.conflicts))

        logger.info(
            "Student requirements synced",
            user_id=user.id,
            student_id=student.id,
            resized=result.resized,
            added=result.added,
            removed=result.removed,
            conflicts=len(result.conflicts),
        )
        return result


def _new_template(
    user: CurrentUser,
    student_id: str,
    slot: Optional[TimeSlot] = None,
    manually_placed: bool = False,
) -> ScheduleSession:
    """An unsaved weekly template delivered by ``user``; unscheduled without a slot."""
    is_sea = normalize_role(user.role) == "sea"
    return ScheduleSession(
        id="",
        student_id=student_id,
        provider_id=user.id,
        day_of_week=slot.day_of_week if slot else None,
        start_time=slot.start_time if slot else None,
        end_time=slot.end_time if slot else None,
        service_type=user.role,
        delivered_by=(DeliveredBy.SEA if is_sea else DeliveredBy.PROVIDER).value,
        assigned_to_sea_id=user.id if is_sea else None,
        manually_placed=manually_placed,
        is_template=True,
    )


def _dates(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
