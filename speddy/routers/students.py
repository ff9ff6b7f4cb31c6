"""
Student placement router.

Auto-scheduling, manual placement and requirement changes for students on
the current user's caseload.
"""

import structlog
from fastapi import APIRouter, Depends

from ..auth import CurrentUser, get_current_user
from ..dependencies import get_session_service
from ..domain.entities import PlacementStatus
from ..models import (AutoScheduleResponse, ErrorResponse, ManualPlacementRequest,
                      ManualPlacementResponse, PlacementResultModel,
                      RequirementsRequest, RequirementSyncResponse)
from ..services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/students",
    tags=["Students"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden", "model": ErrorResponse},
        404: {"description": "Student not found", "model": ErrorResponse},
    },
)


@router.post(
    "/manual-placement",
    response_model=ManualPlacementResponse,
    summary="Place students in the next free slots",
)
async def place_manually(
    body: ManualPlacementRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """
    Create one manually placed session per student on a half-hour grid.

    Per-student failures are reported in ``results`` rather than failing
    the request.
    """
    results = await service.place_manually(
        user, body.student_ids, body.ignore_conflicts, body.prefer_earliest_slot
    )
    return ManualPlacementResponse(
        placed=sum(1 for r in results if r.status == PlacementStatus.SUCCESS),
        results=[PlacementResultModel.model_validate(r) for r in results],
    )


@router.post(
    "/{student_id}/auto-schedule",
    response_model=AutoScheduleResponse,
    summary="Schedule a student's missing sessions",
)
async def auto_schedule(
    student_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    result = await service.auto_schedule_student(user, student_id)
    return AutoScheduleResponse.model_validate(result)


@router.put(
    "/{student_id}/requirements",
    response_model=RequirementSyncResponse,
    responses={400: {"description": "Invalid requirements", "model": ErrorResponse}},
    summary="Change a student's requirements",
)
async def update_requirements(
    student_id: str,
    body: RequirementsRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """Save new minutes or sessions per week and adjust the student's templates."""
    result = await service.sync_student_requirements(
        user, student_id, body.minutes_per_session, body.sessions_per_week
    )
    return RequirementSyncResponse.model_validate(result)
