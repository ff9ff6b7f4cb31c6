"""
Tests for the attendance router.
"""

from datetime import date

from speddy.domain.attendance import AttendanceSummary
from speddy.domain.entities import AttendanceRecord
from speddy.domain.exceptions import ValidationException

from .factories import PROVIDER_ID, STUDENT_ID


def test_get_attendance(client, mock_services):
    mock_services["attendance"].get_attendance.return_value = [
        AttendanceRecord("session-1", STUDENT_ID, date(2025, 1, 15), False, "sick", PROVIDER_ID, "att-1")
    ]

    response = client.get("/api/v1/sessions/session-1/attendance", params={"date": "2025-01-15"})

    assert response.status_code == 200
    data = response.json()
    assert data["session_date"] == "2025-01-15"
    assert data["records"][0]["id"] == "att-1"
    assert data["records"][0]["absence_reason"] == "sick"


def test_get_attendance_requires_date(client):
    assert client.get("/api/v1/sessions/session-1/attendance").status_code == 422


def test_save_attendance(client, mock_services):
    mock_services["attendance"].save_attendance.return_value = [
        AttendanceRecord("session-1", STUDENT_ID, date(2025, 1, 15), True, None, PROVIDER_ID)
    ]

    response = client.post(
        "/api/v1/sessions/session-1/attendance",
        json={
            "session_date": "2025-01-15",
            "records": [{"student_id": STUDENT_ID, "present": True}],
        },
    )

    assert response.status_code == 200
    assert response.json()["records"][0]["present"] is True
    marks = mock_services["attendance"].save_attendance.await_args.args[3]
    assert marks[0].student_id == STUDENT_ID
    assert marks[0].absence_reason is None


def test_save_attendance_unsaved_session(client, mock_services):
    mock_services["attendance"].save_attendance.side_effect = ValidationException(
        "session_id", "temp-1", "Session must be saved before attendance can be recorded"
    )

    response = client.post(
        "/api/v1/sessions/temp-1/attendance",
        json={"session_date": "2025-01-15", "records": [{"student_id": STUDENT_ID, "present": False}]},
    )

    assert response.status_code == 400
    assert response.json()["details"]["reason"] == (
        "Session must be saved before attendance can be recorded"
    )


def test_attendance_summary(client, mock_services):
    mock_services["attendance"].summary.return_value = AttendanceSummary(
        total_sessions=2,
        present_count=0,
        absent_count=1,
        unmarked_count=1,
        absences=[
            {
                "student_name": "Ana Lopez",
                "student_initials": "AL",
                "date": date(2025, 1, 14),
                "reason": "sick",
                "session_time": "9:00 AM - 9:30 AM",
            }
        ],
        unmarked_sessions=[
            {
                "session_id": "s2",
                "student_id": STUDENT_ID,
                "student_name": "Ana Lopez",
                "student_initials": "AL",
                "date": date(2025, 1, 15),
                "session_time": "9:00 AM - 9:30 AM",
            }
        ],
    )

    response = client.get(
        "/api/v1/attendance/summary",
        params={"start_date": "2025-01-13", "end_date": "2025-01-17", "student_id": STUDENT_ID},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["absent_count"] == 1
    assert data["absences"][0]["date"] == "2025-01-14"
    assert data["unmarked_sessions"][0]["session_id"] == "s2"
    assert mock_services["attendance"].summary.await_args.args[3] == STUDENT_ID
