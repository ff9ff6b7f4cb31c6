"""Attendance router."""

from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import CurrentUser, get_current_user
from ..dependencies import get_attendance_service
from ..models import (AttendanceRecordModel, AttendanceRequest, AttendanceResponse,
                      AttendanceSummaryResponse, ErrorResponse)
from ..services.attendance_service import AttendanceService

router = APIRouter(prefix="/api/v1", tags=["Attendance"])


@router.get(
    "/sessions/{session_id}/attendance",
    response_model=AttendanceResponse,
    summary="Attendance of a session on a date",
)
async def get_attendance(
    session_id: str,
    session_date: date = Query(..., alias="date"),
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    records = await service.get_attendance(user, session_id, session_date)
    return AttendanceResponse(
        session_id=session_id,
        session_date=session_date,
        records=[AttendanceRecordModel.model_validate(r) for r in records],
    )


@router.post(
    "/sessions/{session_id}/attendance",
    response_model=AttendanceResponse,
    responses={400: {"description": "Unsaved session or empty marks", "model": ErrorResponse}},
    summary="Mark attendance",
)
async def save_attendance(
    session_id: str,
    body: AttendanceRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    """Upsert one mark per student; a present student has no absence reason."""
    records = await service.save_attendance(
        user, session_id, body.session_date, [r.to_mark() for r in body.records]
    )
    return AttendanceResponse(
        session_id=session_id,
        session_date=body.session_date,
        records=[AttendanceRecordModel.model_validate(r) for r in records],
    )


@router.get(
    "/attendance/summary",
    response_model=AttendanceSummaryResponse,
    summary="Attendance totals for a date range",
)
async def attendance_summary(
    start_date: date = Query(...),
    end_date: date = Query(...),
    student_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    summary = await service.summary(user, start_date, end_date, student_id)
    return AttendanceSummaryResponse(**asdict(summary))
