"""
Weekly schedule router.

Session listing, drag-and-drop moves, unscheduling, instance saving and
grouping. Domain errors are turned into responses by the app's exception
handler.
"""

from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from ..auth import CurrentUser, get_current_user
from ..dependencies import get_instance_service, get_session_service
from ..domain.entities import SessionFilter
from ..models import (CountResponse, ErrorResponse, GenerateInstancesRequest,
                      GenerateInstancesResponse, GroupRequest, GroupResponse,
                      MoveRequest, SaveInstanceRequest, SessionListResponse,
                      SessionResponse, SlotConflictsResponse, UnscheduleDayRequest,
                      UpdateTimeRequest, ValidationResponse)
from ..scheduling.instances import InstanceGenerationOptions
from ..services.instance_service import InstanceService
from ..services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/sessions",
    tags=["Sessions"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden", "model": ErrorResponse},
        404: {"description": "Session not found", "model": ErrorResponse},
    },
)


def _to_response(sessions) -> list[SessionResponse]:
    return [SessionResponse.model_validate(s) for s in sessions]


@router.get("", response_model=SessionListResponse, summary="Sessions in a date range")
async def list_sessions(
    start_date: date = Query(..., description="First date shown"),
    end_date: date = Query(..., description="Last date shown"),
    session_filter: SessionFilter = Query(SessionFilter.ALL, alias="filter", description="Grid filter"),
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """
    Sessions visible to the current user between two dates.

    Dates without a stored instance get virtual ``temp-`` instances built
    from the weekly templates.
    """
    sessions = await service.sessions_for_range(user, start_date, end_date, session_filter)
    return SessionListResponse(sessions=_to_response(sessions), total=len(sessions))


@router.post("/unschedule-day", response_model=CountResponse, summary="Unschedule a whole day")
async def unschedule_day(
    body: UnscheduleDayRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    count = await service.unschedule_day(user, body.day_of_week)
    return CountResponse(count=count)


@router.post("/instances", response_model=SessionResponse, summary="Save a dated instance")
async def save_instance(
    body: SaveInstanceRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """Insert a virtual instance or update completion fields of a stored one."""
    saved = await service.save_instance(user, body.to_entity())
    return SessionResponse.model_validate(saved)


@router.post(
    "/group",
    response_model=GroupResponse,
    responses={400: {"description": "Invalid group", "model": ErrorResponse}},
    summary="Group sessions",
)
async def group_sessions(
    body: GroupRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    sessions = await service.group_sessions(user, body.session_ids, body.group_name, body.group_id)
    group_id = sessions[0].group_id if sessions else body.group_id
    return GroupResponse(
        group_id=group_id or "",
        group_name=body.group_name.strip(),
        sessions=_to_response(sessions),
    )


@router.delete("/group/{group_id}", response_model=CountResponse, summary="Ungroup sessions")
async def ungroup_sessions(
    group_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    count = await service.ungroup_sessions(user, group_id)
    return CountResponse(count=count)


@router.post(
    "/{session_id}/validate-move",
    response_model=ValidationResponse,
    summary="Check a move without saving",
)
async def validate_move(
    session_id: str,
    body: MoveRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    result = await service.validate_move(
        user, session_id, body.day_of_week, body.start_time, body.end_time
    )
    return ValidationResponse(
        valid=result.valid,
        error=result.error,
        conflicts=[c.to_dict() for c in result.conflicts],
    )


@router.patch(
    "/{session_id}/time",
    response_model=SessionResponse,
    responses={
        400: {"description": "Invalid target or past session", "model": ErrorResponse},
        409: {"description": "Move has conflicts and was not forced", "model": ErrorResponse},
    },
    summary="Move a session",
)
async def update_session_time(
    session_id: str,
    body: UpdateTimeRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """
    Move a session to a new day and time.

    Conflicting moves answer 409 with the conflict list unless ``force`` is
    set, in which case the session is saved as ``needs_attention``.
    """
    updated = await service.update_session_time(
        user, session_id, body.day_of_week, body.start_time, body.end_time, body.force
    )
    return SessionResponse.model_validate(updated)


@router.post(
    "/{session_id}/unschedule",
    response_model=SessionResponse,
    summary="Move a session to the unscheduled panel",
)
async def unschedule_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    updated = await service.unschedule_session(user, session_id)
    return SessionResponse.model_validate(updated)


@router.get(
    "/{session_id}/slot-conflicts",
    response_model=SlotConflictsResponse,
    summary="Grid slots where a session cannot be dropped",
)
async def slot_conflicts(
    session_id: str,
    current_day: Optional[int] = Query(None, ge=1, le=5),
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    conflicts = await service.slot_conflicts(user, session_id, current_day)
    return SlotConflictsResponse(session_id=session_id, conflicts=sorted(conflicts))


@router.post(
    "/{session_id}/generate-instances",
    response_model=GenerateInstancesResponse,
    responses={400: {"description": "Not a usable template", "model": ErrorResponse}},
    summary="Create dated instances of a template",
)
async def generate_instances(
    session_id: str,
    body: Optional[GenerateInstancesRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
    service: InstanceService = Depends(get_instance_service),
):
    await sessions.get_accessible_session(user, session_id)
    body = body or GenerateInstancesRequest()
    created = await service.create_instances_from_template(
        session_id,
        InstanceGenerationOptions(weeks_ahead=body.weeks_ahead, until_date=body.until_date),
    )
    logger.info("Template instances generated", user_id=user.id, template_id=session_id, count=len(created))
    return GenerateInstancesResponse(
        template_id=session_id,
        created=len(created),
        instances=_to_response(created),
    )
