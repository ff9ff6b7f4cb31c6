"""
Domain entities for weekly scheduling.

Core business objects representing students, sessions, bell schedules and
special activities. These entities are framework-agnostic; the repository
maps database rows onto them.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Mapping, Optional


class DeliveredBy(str, Enum):
    """Who delivers a session."""

    PROVIDER = "provider"
    SEA = "sea"
    SPECIALIST = "specialist"


class SessionStatus(str, Enum):
    """Scheduling status of a session."""

    ACTIVE = "active"
    CONFLICT = "conflict"
    NEEDS_ATTENTION = "needs_attention"


class ConflictType(str, Enum):
    """Categories reported by move validation."""

    BELL_SCHEDULE = "bell_schedule"
    SPECIAL_ACTIVITY = "special_activity"
    SESSION = "session"
    RULE_VIOLATION = "rule_violation"


class PlacementStatus(str, Enum):
    """Outcome of placing one student's session."""

    SUCCESS = "success"
    FAILED = "failed"


class SessionFilter(str, Enum):
    """Filters offered by the weekly grid."""

    ALL = "all"
    MINE = "mine"
    SEA = "sea"
    SPECIALIST = "specialist"
    ASSIGNED = "assigned"


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class Student:
    """A student on a provider's caseload."""

    id: str
    grade_level: str
    teacher_name: Optional[str] = None
    school_id: Optional[str] = None
    provider_id: Optional[str] = None
    minutes_per_session: int = 30
    sessions_per_week: int = 0
    initials: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Student":
        return cls(
            id=str(row["id"]),
            grade_level=(row.get("grade_level") or "").strip(),
            teacher_name=row.get("teacher_name"),
            school_id=_str_or_none(row.get("school_id")),
            provider_id=_str_or_none(row.get("provider_id")),
            minutes_per_session=row.get("minutes_per_session") or 30,
            sessions_per_week=row.get("sessions_per_week") or 0,
            initials=row.get("initials"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
        )

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Unknown"

    @property
    def name_initials(self) -> str:
        letters = f"{(self.first_name or '')[:1]}{(self.last_name or '')[:1]}".upper()
        return letters or "?"


@dataclass
class ScheduleSession:
    """
    A weekly session template or one of its dated instances.

    Templates have ``session_date`` set to None. A template whose day or
    times are None is unscheduled and sits in the unscheduled panel.
    """

    id: str
    student_id: Optional[str]
    provider_id: Optional[str]
    day_of_week: Optional[int] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    service_type: Optional[str] = None
    session_date: Optional[date] = None
    delivered_by: str = DeliveredBy.PROVIDER.value
    assigned_to_sea_id: Optional[str] = None
    assigned_to_specialist_id: Optional[str] = None
    manually_placed: bool = False
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    status: str = SessionStatus.ACTIVE.value
    conflict_reason: Optional[str] = None
    is_template: bool = False
    template_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    session_notes: Optional[str] = None
    student_absent: bool = False
    outside_schedule_conflict: bool = False
    is_completed: bool = False

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "ScheduleSession":
        return cls(
            id=str(row["id"]),
            student_id=_str_or_none(row.get("student_id")),
            provider_id=_str_or_none(row.get("provider_id")),
            day_of_week=row.get("day_of_week"),
            start_time=row.get("start_time"),
            end_time=row.get("end_time"),
            service_type=row.get("service_type"),
            session_date=row.get("session_date"),
            delivered_by=row.get("delivered_by") or DeliveredBy.PROVIDER.value,
            assigned_to_sea_id=_str_or_none(row.get("assigned_to_sea_id")),
            assigned_to_specialist_id=_str_or_none(row.get("assigned_to_specialist_id")),
            manually_placed=bool(row.get("manually_placed")),
            group_id=_str_or_none(row.get("group_id")),
            group_name=row.get("group_name"),
            status=row.get("status") or SessionStatus.ACTIVE.value,
            conflict_reason=row.get("conflict_reason"),
            is_template=bool(row.get("is_template")),
            template_id=_str_or_none(row.get("template_id")),
            completed_at=row.get("completed_at"),
            completed_by=_str_or_none(row.get("completed_by")),
            session_notes=row.get("session_notes"),
            student_absent=bool(row.get("student_absent")),
            outside_schedule_conflict=bool(row.get("outside_schedule_conflict")),
            is_completed=bool(row.get("is_completed")),
        )

    @property
    def is_scheduled(self) -> bool:
        return (
            self.day_of_week is not None
            and self.start_time is not None
            and self.end_time is not None
        )

    @property
    def is_instance(self) -> bool:
        return self.session_date is not None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BellSchedule:
    """A bell-schedule period that blocks the listed grades."""

    id: str
    grade_level: str
    day_of_week: int
    start_time: time
    end_time: time
    period_name: Optional[str] = None
    school_id: Optional[str] = None
    provider_id: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "BellSchedule":
        return cls(
            id=str(row["id"]),
            grade_level=row["grade_level"],
            day_of_week=row["day_of_week"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            period_name=row.get("period_name"),
            school_id=_str_or_none(row.get("school_id")),
            provider_id=_str_or_none(row.get("provider_id")),
        )


@dataclass(frozen=True)
class SpecialActivity:
    """A class-wide activity (PE, library, ...) for one teacher."""

    id: str
    teacher_name: str
    day_of_week: int
    start_time: time
    end_time: time
    activity_name: Optional[str] = None
    school_id: Optional[str] = None
    provider_id: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "SpecialActivity":
        return cls(
            id=str(row["id"]),
            teacher_name=row["teacher_name"],
            day_of_week=row["day_of_week"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            activity_name=row.get("activity_name"),
            school_id=_str_or_none(row.get("school_id")),
            provider_id=_str_or_none(row.get("provider_id")),
        )


@dataclass(frozen=True)
class SchoolHours:
    """School start and end for a grade, optionally per day."""

    grade_level: str
    start_time: time
    end_time: time
    day_of_week: Optional[int] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "SchoolHours":
        return cls(
            grade_level=row["grade_level"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            day_of_week=row.get("day_of_week"),
        )


@dataclass(frozen=True)
class Profile:
    """A provider profile."""

    id: str
    role: str
    full_name: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            role=(row.get("role") or "").lower(),
            full_name=row.get("full_name"),
        )


@dataclass(frozen=True)
class AttendanceRecord:
    """Attendance for one student at one dated session."""

    session_id: str
    student_id: str
    session_date: date
    present: bool
    absence_reason: Optional[str] = None
    marked_by: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "AttendanceRecord":
        return cls(
            id=_str_or_none(row.get("id")),
            session_id=str(row["session_id"]),
            student_id=str(row["student_id"]),
            session_date=row["session_date"],
            present=bool(row["present"]),
            absence_reason=row.get("absence_reason"),
            marked_by=_str_or_none(row.get("marked_by")),
        )


@dataclass
class Conflict:
    """A single reason a session cannot be placed."""

    type: ConflictType
    description: str
    conflicting_item: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "description": self.description,
            "conflicting_item": self.conflicting_item,
        }


@dataclass
class ValidationResult:
    """Outcome of validating a session move."""

    valid: bool
    error: Optional[str] = None
    conflicts: list[Conflict] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def from_conflicts(cls, conflicts: list[Conflict]) -> "ValidationResult":
        if not conflicts:
            return cls.ok()
        return cls(valid=False, error=conflicts[0].description, conflicts=conflicts)


@dataclass(frozen=True)
class TimeSlot:
    """A weekly position a new session can take."""

    day_of_week: int
    start_time: time
    end_time: time


@dataclass
class AutoScheduleResult:
    """Sessions the auto-scheduler placed for one student."""

    student_id: str
    sessions_needed: int
    sessions: list[ScheduleSession] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.sessions) == self.sessions_needed


@dataclass
class PlacementResult:
    """Outcome of a manual placement for one student."""

    student_id: str
    status: PlacementStatus
    session: Optional[ScheduleSession] = None
    slot: Optional[TimeSlot] = None
    conflicts: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, student_id: str, error: str) -> "PlacementResult":
        return cls(student_id=student_id, status=PlacementStatus.FAILED, error=error)


@dataclass
class RequirementSyncResult:
    """
    Changes made to a student's templates after a requirement update.

    ``conflicts`` maps template ids to the reason they were marked
    ``needs_attention``.
    """

    student_id: str
    resized: int = 0
    added: int = 0
    removed: int = 0
    conflicts: dict[str, str] = field(default_factory=dict)
