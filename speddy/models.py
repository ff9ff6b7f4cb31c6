"""Pydantic models for request/response validation."""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .domain.attendance import AttendanceMark
from .domain.entities import (BellSchedule, DeliveredBy, PlacementStatus,
                              ScheduleSession, SessionStatus, SpecialActivity)


class SessionResponse(BaseModel):
    """A template or dated instance as shown on the grid."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: Optional[str] = None
    provider_id: Optional[str] = None
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


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class MoveRequest(BaseModel):
    """Target position for a session on the weekly grid."""

    day_of_week: int = Field(..., ge=1, le=5, description="ISO weekday, 1 = Monday")
    start_time: time = Field(..., json_schema_extra={"example": "09:00"})
    end_time: time = Field(..., json_schema_extra={"example": "09:30"})


class UpdateTimeRequest(MoveRequest):
    force: bool = Field(default=False, description="Save even when the move has conflicts")


class ConflictModel(BaseModel):
    type: str
    description: str
    conflicting_item: dict = {}


class ValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    conflicts: list[ConflictModel] = []


class UnscheduleDayRequest(BaseModel):
    day_of_week: int = Field(..., ge=1, le=5)


class CountResponse(BaseModel):
    count: int
    success: bool = True


class SlotConflictsResponse(BaseModel):
    session_id: str
    conflicts: list[str]


class SaveInstanceRequest(BaseModel):
    """
    A dated instance to persist.

    ``id`` is either a ``temp-`` id for a virtual instance or the id of a
    stored instance whose completion fields are updated.
    """

    id: str
    student_id: Optional[str] = None
    provider_id: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=1, le=7)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    service_type: Optional[str] = None
    session_date: date
    delivered_by: DeliveredBy = DeliveredBy.PROVIDER
    assigned_to_sea_id: Optional[str] = None
    assigned_to_specialist_id: Optional[str] = None
    manually_placed: bool = False
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    template_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    session_notes: Optional[str] = Field(None, max_length=2000)

    def to_entity(self) -> ScheduleSession:
        data = self.model_dump()
        data["delivered_by"] = self.delivered_by.value
        data["status"] = self.status.value
        return ScheduleSession(**data)


class GenerateInstancesRequest(BaseModel):
    weeks_ahead: Optional[int] = Field(None, ge=1, le=52)
    until_date: Optional[date] = None


class GenerateInstancesResponse(BaseModel):
    template_id: str
    created: int
    instances: list[SessionResponse]


class BulkGenerateResponse(BaseModel):
    total: int
    created: int
    errors: list[dict]
    end_date: date


class GroupRequest(BaseModel):
    session_ids: list[str] = Field(..., description="Sessions to put in one group")
    group_name: str = Field(..., max_length=100)
    group_id: Optional[str] = None


class GroupResponse(BaseModel):
    group_id: str
    group_name: str
    sessions: list[SessionResponse]


class AttendanceMarkModel(BaseModel):
    student_id: str
    present: bool
    absence_reason: Optional[str] = Field(None, max_length=500)

    def to_mark(self) -> AttendanceMark:
        return AttendanceMark(
            student_id=self.student_id,
            present=self.present,
            absence_reason=self.absence_reason,
        )


class AttendanceRequest(BaseModel):
    session_date: date
    records: list[AttendanceMarkModel]


class AttendanceRecordModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    session_id: str
    student_id: str
    session_date: date
    present: bool
    absence_reason: Optional[str] = None
    marked_by: Optional[str] = None


class AttendanceResponse(BaseModel):
    session_id: str
    session_date: date
    records: list[AttendanceRecordModel]


class AbsenceModel(BaseModel):
    student_name: str
    student_initials: str
    date: date
    reason: Optional[str] = None
    session_time: str


class UnmarkedSessionModel(BaseModel):
    session_id: str
    student_id: str
    student_name: str
    student_initials: str
    date: date
    session_time: str


class AttendanceSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_sessions: int
    present_count: int
    absent_count: int
    unmarked_count: int
    absences: list[AbsenceModel]
    unmarked_sessions: list[UnmarkedSessionModel]


class BellScheduleRequest(BaseModel):
    """A new or changed bell-schedule period."""

    id: str = ""
    grade_level: str = Field(..., min_length=1, description="Comma-separated grades, e.g. 1,2,3")
    day_of_week: int = Field(..., ge=1, le=5)
    start_time: time
    end_time: time
    period_name: Optional[str] = None
    school_id: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def to_entity(self, provider_id: str) -> BellSchedule:
        return BellSchedule(provider_id=provider_id, **self.model_dump())


class SpecialActivityRequest(BaseModel):
    """A new or changed special activity for one teacher's class."""

    id: str = ""
    teacher_name: str = Field(..., min_length=1)
    activity_name: Optional[str] = None
    day_of_week: int = Field(..., ge=1, le=5)
    start_time: time
    end_time: time
    school_id: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def to_entity(self, provider_id: str) -> SpecialActivity:
        return SpecialActivity(provider_id=provider_id, **self.model_dump())


class TimeSlotModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int
    start_time: time
    end_time: time


class AutoScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: str
    sessions_needed: int
    success: bool
    sessions: list[SessionResponse]
    errors: list[str]


class RequirementsRequest(BaseModel):
    """New service requirements for a student."""

    minutes_per_session: Optional[int] = Field(None, ge=5, le=240)
    sessions_per_week: Optional[int] = Field(None, ge=0, le=20)

    @model_validator(mode="after")
    def check_any(self):
        if self.minutes_per_session is None and self.sessions_per_week is None:
            raise ValueError("minutes_per_session or sessions_per_week is required")
        return self


class RequirementSyncResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: str
    resized: int
    added: int
    removed: int
    conflicts: dict[str, str]


class ManualPlacementRequest(BaseModel):
    student_ids: list[str] = Field(..., min_length=1)
    ignore_conflicts: bool = Field(
        default=True, description="Use slots that overlap existing sessions"
    )
    prefer_earliest_slot: bool = False


class PlacementResultModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: str
    status: PlacementStatus
    session: Optional[SessionResponse] = None
    slot: Optional[TimeSlotModel] = None
    conflicts: list[str] = []
    error: Optional[str] = None


class ManualPlacementResponse(BaseModel):
    placed: int
    results: list[PlacementResultModel]


class FlaggedSessionsResponse(BaseModel):
    count: int
    sessions: list[SessionResponse]


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str
    error_code: Optional[str] = None
    details: dict = {}
