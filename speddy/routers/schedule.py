"""
School calendar change router.

When a bell period or special activity is added or changed, the current
user's templates it now overlaps are flagged as ``conflict``.
"""

from fastapi import APIRouter, Depends

from ..auth import CurrentUser, get_current_user
from ..dependencies import get_session_service
from ..models import (BellScheduleRequest, FlaggedSessionsResponse, SessionResponse,
                      SpecialActivityRequest)
from ..services.session_service import SessionService

router = APIRouter(prefix="/api/v1/schedule", tags=["Schedule"])


def _flagged(sessions) -> FlaggedSessionsResponse:
    return FlaggedSessionsResponse(
        count=len(sessions),
        sessions=[SessionResponse.model_validate(s) for s in sessions],
    )


@router.post(
    "/bell-schedule-conflicts",
    response_model=FlaggedSessionsResponse,
    summary="Flag sessions overlapping a bell period",
)
async def bell_schedule_conflicts(
    body: BellScheduleRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    flagged = await service.flag_bell_schedule_conflicts(user, body.to_entity(user.id))
    return _flagged(flagged)


@router.post(
    "/special-activity-conflicts",
    response_model=FlaggedSessionsResponse,
    summary="Flag sessions overlapping a special activity",
)
async def special_activity_conflicts(
    body: SpecialActivityRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    flagged = await service.flag_special_activity_conflicts(user, body.to_entity(user.id))
    return _flagged(flagged)
