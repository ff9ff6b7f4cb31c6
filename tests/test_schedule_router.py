"""
Tests for the school calendar change router.
"""

from datetime import time

from .factories import PROVIDER_ID, make_session

BELL = {
    "id": "bell-1",
    "grade_level": "1,2,3",
    "day_of_week": 3,
    "start_time": "10:00",
    "end_time": "10:30",
    "period_name": "Recess",
    "school_id": "school-1",
}


class TestBellScheduleConflicts:
    def test_flags_sessions(self, client, mock_services):
        mock_services["sessions"].flag_bell_schedule_conflicts.return_value = [
            make_session(status="conflict", conflict_reason="Conflicts with recess")
        ]

        response = client.post("/api/v1/schedule/bell-schedule-conflicts", json=BELL)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["sessions"][0]["status"] == "conflict"

        bell = mock_services["sessions"].flag_bell_schedule_conflicts.await_args.args[1]
        assert bell.provider_id == PROVIDER_ID
        assert bell.start_time == time(10, 0)
        assert bell.period_name == "Recess"

    def test_inverted_times(self, client):
        response = client.post(
            "/api/v1/schedule/bell-schedule-conflicts",
            json={**BELL, "start_time": "11:00"},
        )
        assert response.status_code == 422

    def test_grade_required(self, client):
        response = client.post(
            "/api/v1/schedule/bell-schedule-conflicts", json={**BELL, "grade_level": ""}
        )
        assert response.status_code == 422


class TestSpecialActivityConflicts:
    def test_nothing_affected(self, client, mock_services):
        mock_services["sessions"].flag_special_activity_conflicts.return_value = []

        response = client.post(
            "/api/v1/schedule/special-activity-conflicts",
            json={
                "teacher_name": "Ms. Rivera",
                "activity_name": "PE",
                "day_of_week": 3,
                "start_time": "13:00",
                "end_time": "13:45",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"count": 0, "sessions": []}
        activity = mock_services["sessions"].flag_special_activity_conflicts.await_args.args[1]
        assert activity.teacher_name == "Ms. Rivera"
        assert activity.id == ""

    def test_weekend_rejected(self, client):
        response = client.post(
            "/api/v1/schedule/special-activity-conflicts",
            json={
                "teacher_name": "Ms. Rivera",
                "day_of_week": 7,
                "start_time": "13:00",
                "end_time": "13:45",
            },
        )
        assert response.status_code == 422
