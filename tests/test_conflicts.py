"""
Tests for schedule conflict detection.

Covers:
- Move validation per conflict category
- Grid slot conflicts
- Sessions affected by bell schedule and special activity changes
- Manual placement helpers
"""

from datetime import time, timedelta

import pytest

from speddy.domain.entities import ConflictType, Profile, SchoolHours
from speddy.scheduling.conflicts import (ScheduleContext, calculate_slot_conflicts,
                                         day_priority, detect_slot_conflicts,
                                         find_sessions_affected_by_bell_schedule,
                                         find_sessions_affected_by_special_activity,
                                         max_concurrent, validate_manual_placement,
                                         validate_session_move)

from .factories import (OTHER_PROVIDER_ID, STUDENT_ID, TODAY, make_activity,
                        make_bell, make_session, make_student)


def _provider_load(count, day=3, start=time(11, 0), end=time(11, 30)):
    """``count`` templates of other students for the default provider."""
    return [
        make_session(
            id=f"load-{i}",
            student_id=f"other-student-{i}",
            day_of_week=day,
            start_time=start,
            end_time=end,
        )
        for i in range(count)
    ]


class TestValidateSessionMove:
    """Test move validation."""

    def test_temporary_session_is_always_valid(self, context, rules):
        session = make_session(id="temp-123")
        result = validate_session_move(
            session, 3, time(10, 0), time(9, 0), context, rules, TODAY
        )
        assert result.valid

    def test_empty_schedule_is_valid(self, context, rules):
        result = validate_session_move(
            make_session(), 2, time(9, 0), time(9, 30), context, rules, TODAY
        )
        assert result.valid
        assert result.error is None
        assert result.conflicts == []

    def test_invalid_time_range(self, context, rules):
        result = validate_session_move(
            make_session(), 3, time(10, 0), time(10, 0), context, rules, TODAY
        )
        assert not result.valid
        assert result.error == "Invalid time range: start time must be before end time"
        assert result.conflicts == []

    def test_past_instance_rejected(self, context, rules):
        session = make_session(session_date=TODAY - timedelta(days=7))
        result = validate_session_move(
            session, 3, time(10, 0), time(10, 30), context, rules, TODAY
        )
        assert not result.valid
        assert result.error == "Cannot modify sessions in the past"

    def test_todays_instance_can_move(self, context, rules):
        session = make_session(session_date=TODAY)
        result = validate_session_move(
            session, 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        assert result.valid

    def test_bell_schedule_conflict(self, context, rules):
        context.bell_schedules = [make_bell()]
        result = validate_session_move(
            make_session(), 3, time(10, 15), time(10, 45), context, rules, TODAY
        )
        assert not result.valid
        assert [c.type for c in result.conflicts] == [ConflictType.BELL_SCHEDULE]
        assert "Recess" in result.error

    def test_bell_schedule_other_school_ignored(self, context, rules):
        context.bell_schedules = [make_bell(school_id="school-2")]
        result = validate_session_move(
            make_session(), 3, time(10, 15), time(10, 45), context, rules, TODAY
        )
        assert result.valid

    def test_bell_schedule_other_grade_ignored(self, context, rules):
        context.bell_schedules = [make_bell(grade_level="4,5")]
        result = validate_session_move(
            make_session(), 3, time(10, 15), time(10, 45), context, rules, TODAY
        )
        assert result.valid

    def test_bell_schedule_touching_is_fine(self, context, rules):
        context.bell_schedules = [make_bell()]
        result = validate_session_move(
            make_session(), 3, time(10, 30), time(11, 0), context, rules, TODAY
        )
        assert result.valid

    def test_student_without_school_skips_bell_check(self, rules):
        context = ScheduleContext(
            student=make_student(school_id=None), bell_schedules=[make_bell()]
        )
        result = validate_session_move(
            make_session(), 3, time(10, 0), time(10, 30), context, rules, TODAY
        )
        assert result.valid

    def test_special_activity_conflict(self, context, rules):
        context.special_activities = [make_activity()]
        result = validate_session_move(
            make_session(), 3, time(13, 30), time(14, 0), context, rules, TODAY
        )
        assert not result.valid
        assert result.conflicts[0].type == ConflictType.SPECIAL_ACTIVITY
        assert "PE" in result.error
        assert "Ms. Rivera" in result.error

    def test_special_activity_other_teacher_ignored(self, context, rules):
        context.special_activities = [make_activity(teacher_name="Mr. Chen")]
        result = validate_session_move(
            make_session(), 3, time(13, 30), time(14, 0), context, rules, TODAY
        )
        assert result.valid

    def test_concurrent_limit_reached(self, context, rules):
        context.sessions = _provider_load(6)
        result = validate_session_move(
            make_session(), 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        assert not result.valid
        assert result.conflicts[0].type == ConflictType.RULE_VIOLATION
        assert result.error == "Maximum concurrent session limit (6) would be exceeded"

    def test_concurrent_below_limit(self, context, rules):
        context.sessions = _provider_load(5)
        result = validate_session_move(
            make_session(), 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        assert result.valid

    def test_other_providers_do_not_count_toward_capacity(self, context, rules):
        context.sessions = [
            make_session(
                id=f"other-{i}",
                student_id=f"other-student-{i}",
                provider_id=OTHER_PROVIDER_ID,
                start_time=time(11, 0),
                end_time=time(11, 30),
            )
            for i in range(6)
        ]
        result = validate_session_move(
            make_session(), 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        assert result.valid

    def test_moved_session_not_counted_against_itself(self, context, rules):
        session = make_session(start_time=time(11, 0), end_time=time(11, 30))
        context.sessions = _provider_load(5) + [session]
        result = validate_session_move(
            session, 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        assert result.valid

    def test_consecutive_rule(self, context, rules):
        context.sessions = [
            make_session(id="session-2", start_time=time(10, 0), end_time=time(10, 45))
        ]
        result = validate_session_move(
            make_session(), 3, time(10, 45), time(11, 15), context, rules, TODAY
        )
        assert not result.valid
        assert result.error == (
            "Would create consecutive sessions longer than 60 minutes (75 minutes total)"
        )

    def test_consecutive_at_limit_is_fine(self, context, rules):
        context.sessions = [
            make_session(id="session-2", start_time=time(10, 0), end_time=time(10, 30))
        ]
        result = validate_session_move(
            make_session(), 3, time(10, 30), time(11, 0), context, rules, TODAY
        )
        assert result.valid

    def test_break_rule(self, context, rules):
        context.sessions = [make_session(id="session-2")]
        result = validate_session_move(
            make_session(), 3, time(9, 45), time(10, 15), context, rules, TODAY
        )
        assert not result.valid
        assert result.conflicts[0].type == ConflictType.RULE_VIOLATION
        assert "only 15 minutes gap" in result.error

    def test_break_of_minimum_length_is_fine(self, context, rules):
        context.sessions = [make_session(id="session-2")]
        result = validate_session_move(
            make_session(), 3, time(10, 0), time(10, 30), context, rules, TODAY
        )
        assert result.valid

    def test_student_overlap_same_provider(self, context, rules):
        context.sessions = [make_session(id="session-2")]
        result = validate_session_move(
            make_session(), 3, time(9, 15), time(9, 45), context, rules, TODAY
        )
        assert not result.valid
        assert result.conflicts[0].type == ConflictType.SESSION
        assert result.error == "Student already has a session scheduled at 09:00 - 09:30"

    def test_student_overlap_other_provider_names_role(self, context, rules):
        context.sessions = [
            make_session(id="session-3", provider_id=OTHER_PROVIDER_ID, service_type="speech")
        ]
        context.providers = {
            OTHER_PROVIDER_ID: Profile(id=OTHER_PROVIDER_ID, role="speech", full_name="Sam Lee")
        }
        result = validate_session_move(
            make_session(), 3, time(9, 15), time(9, 45), context, rules, TODAY
        )
        assert not result.valid
        assert result.error == "Student has speech with Sam Lee (Speech Therapist) at this time"

    def test_all_categories_reported_once(self, context, rules):
        context.bell_schedules = [make_bell(start_time=time(11, 0), end_time=time(11, 30))]
        context.sessions = _provider_load(6) + [
            make_session(id="session-2", start_time=time(11, 0), end_time=time(11, 30))
        ]
        result = validate_session_move(
            make_session(), 3, time(11, 0), time(11, 30), context, rules, TODAY
        )
        types = [c.type for c in result.conflicts]
        assert types == [
            ConflictType.BELL_SCHEDULE,
            ConflictType.RULE_VIOLATION,
            ConflictType.SESSION,
        ]
        assert result.error == result.conflicts[0].description


class TestMaxConcurrent:
    """Peak concurrency over a range."""

    def test_peak_inside_range(self):
        sessions = [
            make_session(id="a", start_time=time(9, 0), end_time=time(10, 0)),
            make_session(id="b", start_time=time(9, 30), end_time=time(10, 30)),
            make_session(id="c", start_time=time(9, 45), end_time=time(10, 0)),
        ]
        assert max_concurrent(sessions, 540, 600) == 3

    def test_no_sessions(self):
        assert max_concurrent([], 540, 600) == 0

    def test_session_ending_at_range_start_not_counted(self):
        sessions = [make_session(start_time=time(8, 30), end_time=time(9, 0))]
        assert max_concurrent(sessions, 540, 570) == 0


class TestSlotConflicts:
    """Grid slot conflicts."""

    def test_without_student(self, rules):
        assert calculate_slot_conflicts(make_session(), ScheduleContext(student=None), rules) == set()

    def test_empty_schedule_only_blocks_end_of_day(self, context, rules):
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert result == {f"{day}-17:45" for day in range(1, 6)}

    def test_bell_period_blocks_overlapping_starts(self, context, rules):
        context.bell_schedules = [make_bell()]
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert {"3-09:45", "3-10:00", "3-10:15"} <= result
        assert "3-09:30" not in result
        assert "3-10:30" not in result
        assert "2-10:00" not in result

    def test_bell_period_of_other_school_ignored(self, context, rules):
        context.bell_schedules = [make_bell(school_id="school-2")]

        result = calculate_slot_conflicts(make_session(), context, rules)
        move = validate_session_move(
            make_session(), 3, time(10, 0), time(10, 30), context, rules, TODAY
        )

        assert "3-10:00" not in result
        assert move.valid

    def test_student_without_school_not_blocked(self, rules):
        context = ScheduleContext(
            student=make_student(school_id=None),
            bell_schedules=[make_bell()],
            special_activities=[make_activity()],
        )

        result = calculate_slot_conflicts(make_session(), context, rules)

        assert "3-10:00" not in result
        assert "3-13:00" not in result

    def test_activity_of_other_school_ignored(self, context, rules):
        context.special_activities = [make_activity(school_id="school-2")]
        assert "3-13:00" not in calculate_slot_conflicts(make_session(), context, rules)

    def test_activity_blocks_teacher_class(self, context, rules):
        context.special_activities = [make_activity()]
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert {"3-12:45", "3-13:00", "3-13:30"} <= result
        assert "3-13:45" not in result

    def test_current_position_is_skipped(self, context, rules):
        context.bell_schedules = [make_bell(start_time=time(9, 0), end_time=time(9, 30))]
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert "3-09:00" not in result
        assert "3-08:45" in result

    def test_school_hours(self, context, rules):
        context.school_hours = [
            SchoolHours(grade_level="3", start_time=time(8, 0), end_time=time(14, 30))
        ]
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert "3-07:45" in result
        assert "3-08:00" not in result
        assert "3-14:00" not in result
        assert "3-14:15" in result

    def test_provider_capacity(self, context, rules):
        context.sessions = _provider_load(6, day=2)
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert "2-10:45" in result
        assert "2-11:00" in result
        assert "2-11:30" not in result

    def test_student_break_rule(self, context, rules):
        context.sessions = [make_session(id="session-2", day_of_week=1)]
        result = calculate_slot_conflicts(make_session(), context, rules)
        assert "1-09:45" in result
        assert "1-10:00" not in result

    def test_result_independent_of_current_day(self, context, rules):
        context.bell_schedules = [make_bell()]
        context.sessions = _provider_load(6, day=2)
        assert calculate_slot_conflicts(make_session(), context, rules, 3) == (
            calculate_slot_conflicts(make_session(), context, rules, 1)
        )


class TestDayPriority:
    @pytest.mark.parametrize(
        "current,expected",
        [
            (3, [3, 2, 4, 1, 5]),
            (1, [1, 2, 3, 4, 5]),
            (5, [5, 4, 1, 2, 3]),
            (None, [1, 2, 3, 4, 5]),
            (6, [1, 2, 3, 4, 5]),
        ],
    )
    def test_order(self, current, expected):
        assert day_priority(current) == expected


class TestAffectedSessions:
    """Sessions displaced by school calendar changes."""

    @pytest.fixture
    def students(self):
        return {
            STUDENT_ID: make_student(),
            "grade-5": make_student(id="grade-5", grade_level="5", teacher_name="Mr. Chen"),
        }

    def test_bell_schedule(self, students):
        overlapping = make_session(id="s1", start_time=time(10, 15), end_time=time(10, 45))
        sessions = [
            overlapping,
            make_session(id="s2"),
            make_session(id="s3", day_of_week=4, start_time=time(10, 15), end_time=time(10, 45)),
            make_session(id="s4", day_of_week=None, start_time=None, end_time=None),
            make_session(id="s5", student_id="grade-5", start_time=time(10, 0), end_time=time(10, 30)),
        ]
        assert find_sessions_affected_by_bell_schedule(sessions, students, make_bell()) == [overlapping]

    def test_instances_are_ignored(self, students):
        instance = make_session(
            id="s1", start_time=time(10, 0), end_time=time(10, 30), session_date=TODAY
        )
        assert find_sessions_affected_by_bell_schedule([instance], students, make_bell()) == []

    def test_special_activity(self, students):
        overlapping = make_session(id="s1", start_time=time(13, 30), end_time=time(14, 0))
        other_teacher = make_session(
            id="s2", student_id="grade-5", start_time=time(13, 0), end_time=time(13, 30)
        )
        result = find_sessions_affected_by_special_activity(
            [overlapping, other_teacher], students, make_activity()
        )
        assert result == [overlapping]


class TestManualPlacement:
    def test_detect_slot_conflicts(self):
        sessions = [
            make_session(id="a", start_time=time(9, 0), end_time=time(9, 30)),
            make_session(id="b", start_time=time(9, 30), end_time=time(10, 0)),
            make_session(id="c", provider_id=OTHER_PROVIDER_ID),
            make_session(id="d", day_of_week=2),
        ]
        result = detect_slot_conflicts(3, time(9, 15), time(9, 30), sessions, sessions[0].provider_id)
        assert [s.id for s in result] == ["a"]

    def test_valid_placement(self):
        assert validate_manual_placement(2, time(9, 0), time(9, 30)) == []

    def test_outside_school_hours(self):
        errors = validate_manual_placement(2, time(7, 30), time(8, 0))
        assert errors == ["Session falls outside school hours (8am - 3pm)"]

    def test_weekend(self):
        errors = validate_manual_placement(6, time(9, 0), time(15, 30))
        assert len(errors) == 2
        assert "Session must be on a weekday" in errors
